import asyncio
import pytest
from listing_studio.database.memory import InMemoryGenerationRepository, InMemoryImageStorage
from listing_studio.dependencies import build_memory_services
from listing_studio.models.credit import TransactionType
from listing_studio.models.generation import GenerationStatus, ImageType, IMAGE_TYPES
from listing_studio.models.image import ImageStatus
from listing_studio.utils.exceptions import (ValidationException, AnalysisFailureException,
                                             GenerationNotFoundException,
                                             InsufficientCreditsException,
                                             InvalidStateTransitionException,
                                             ImageGenerationFailedException, DatabaseException)
from helpers import (run, analyze_request, inline_png, analyzed_generation,
                     generating_generation, PNG_BASE64)


def _usage(services, user_id):
    return [tx for tx in services.ledger.transactions(user_id, limit=100)
            if tx.type == TransactionType.USAGE]


class FailingAnalyzingTransition(InMemoryGenerationRepository):
    def transition(self, generation_id, expected, target, updates=None):
        if target == GenerationStatus.ANALYZING:
            raise DatabaseException("connection reset")
        return super().transition(generation_id, expected, target, updates)


class FailingUploadStorage(InMemoryImageStorage):
    def upload(self, path, data, content_type="image/png"):
        raise DatabaseException("Failed to upload image")


# ==============================================================
# start_analysis
# ==============================================================
def test_analysis_creates_generation_in_analyzing(pipeline, services, user):
    result = run(pipeline.start_analysis(str(user.id), analyze_request()))

    generation = pipeline.get_generation(str(result.generation_id), str(user.id)).generation
    assert generation.status == GenerationStatus.ANALYZING
    assert generation.product_title == "Steel Water Bottle"
    assert generation.features == ["Keeps drinks cold 24h", "Leak proof"]
    assert len(generation.framework_candidates) == len(result.frameworks) == 4
    # Analysis is free
    assert services.ledger.balance(str(user.id)) == 10


def test_empty_product_name_creates_nothing(pipeline, db, adapter, user):
    with pytest.raises(ValidationException):
        run(pipeline.start_analysis(str(user.id), analyze_request(product_name="   ")))

    assert db.generations == {}
    assert adapter.analysis_calls == 0


@pytest.mark.parametrize("overrides", [
    {"productImageBase64": None, "productImageMimeType": None},
    {"productImageBase64": "not base64!!"},
    {"productImageMimeType": "application/pdf"},
    {"lockedColors": ["#12345"]},
    {"styleReference": {"base64": PNG_BASE64, "mimeType": "text/plain"}},
])
def test_invalid_input_is_rejected_before_analysis(pipeline, db, adapter, user, overrides):
    with pytest.raises(ValidationException):
        run(pipeline.start_analysis(str(user.id), analyze_request(**overrides)))

    assert db.generations == {}
    assert adapter.analysis_calls == 0


def test_adapter_failure_creates_no_generation(pipeline, db, adapter, user):
    adapter.analysis_error = RuntimeError("model overloaded")

    with pytest.raises(AnalysisFailureException) as exc_info:
        run(pipeline.start_analysis(str(user.id), analyze_request()))

    assert "model overloaded" in exc_info.value.detail
    assert db.generations == {}


def test_failed_save_after_analysis_marks_generation_failed(pipeline, db, user):
    pipeline.generations = FailingAnalyzingTransition(db)

    with pytest.raises(DatabaseException) as exc_info:
        run(pipeline.start_analysis(str(user.id), analyze_request()))

    assert exc_info.value.detail == "Failed to save generation"
    [record] = db.generations.values()
    assert record["status"] == GenerationStatus.FAILED.value
    assert record["error_message"] == "connection reset"
    assert any(row["source"] == "pipeline" and row["log_type"] == "error"
               for row in db.system_logs)


@pytest.mark.parametrize("locked,expected_mode", [([], "extract"), (["#aa00ff"], "locked")])
def test_style_reference_sets_color_mode(pipeline, user, locked, expected_mode):
    request = analyze_request(styleReference={"base64": PNG_BASE64, "mimeType": "image/png"},
                              lockedColors=locked)
    result = run(pipeline.start_analysis(str(user.id), request))

    generation = pipeline.get_generation(str(result.generation_id), str(user.id)).generation
    assert generation.color_mode == expected_mode
    assert generation.locked_colors == ([color.upper() for color in locked] or None)


# ==============================================================
# select_framework
# ==============================================================
def test_select_framework_moves_to_generating(pipeline, user):
    generation_id, framework = analyzed_generation(pipeline, str(user.id))

    prompts = run(pipeline.select_framework(generation_id, str(user.id),
                                            framework.model_dump(mode="json")))

    generation = pipeline.get_generation(generation_id, str(user.id)).generation
    assert generation.status == GenerationStatus.GENERATING
    assert generation.selected_framework["framework_id"] == framework.framework_id
    assert generation.image_prompts == prompts
    assert list(prompts) == [image_type.value for image_type in IMAGE_TYPES]


def test_global_note_reaches_adapter_and_every_prompt(pipeline, adapter, user):
    generation_id, prompts = generating_generation(pipeline, str(user.id),
                                                   global_note="Use a marble background")

    assert adapter.prompt_calls[-1]["global_note"] == "Use a marble background"
    assert all(prompt.endswith("\n\nAdditional instructions: Use a marble background")
               for prompt in prompts.values())
    generation = pipeline.get_generation(generation_id, str(user.id)).generation
    assert generation.global_note == "Use a marble background"


def test_select_framework_by_other_user_is_not_found(pipeline, db, user):
    generation_id, framework = analyzed_generation(pipeline, str(user.id))
    intruder = db.create_user(email="intruder@example.com", credits=10)

    with pytest.raises(GenerationNotFoundException) as exc_info:
        run(pipeline.select_framework(generation_id, str(intruder.id),
                                      framework.model_dump(mode="json")))

    assert exc_info.value.status_code == 404
    generation = pipeline.get_generation(generation_id, str(user.id)).generation
    assert generation.status == GenerationStatus.ANALYZING
    assert generation.selected_framework is None


def test_malformed_framework_is_validation_error(pipeline, user):
    generation_id, framework = analyzed_generation(pipeline, str(user.id))
    payload = framework.model_dump(mode="json")
    payload["colors"] = payload["colors"][:3]

    with pytest.raises(ValidationException):
        run(pipeline.select_framework(generation_id, str(user.id), payload))


def test_prompt_failure_leaves_generation_analyzing(pipeline, adapter, user):
    generation_id, framework = analyzed_generation(pipeline, str(user.id))
    adapter.prompts_error = AnalysisFailureException("No valid JSON found in AI response")

    with pytest.raises(AnalysisFailureException):
        run(pipeline.select_framework(generation_id, str(user.id),
                                      framework.model_dump(mode="json")))

    generation = pipeline.get_generation(generation_id, str(user.id)).generation
    assert generation.status == GenerationStatus.ANALYZING


def test_select_framework_twice_is_conflict(pipeline, user):
    generation_id, _ = generating_generation(pipeline, str(user.id))
    framework = pipeline.get_generation(generation_id, str(user.id)).generation.selected_framework

    with pytest.raises(InvalidStateTransitionException) as exc_info:
        run(pipeline.select_framework(generation_id, str(user.id), framework))
    assert exc_info.value.status_code == 409


# ==============================================================
# generate_one
# ==============================================================
def test_zero_credits_is_rejected_without_side_effects(pipeline, services, db, adapter):
    broke = db.create_user(email="broke@example.com", credits=0)
    generation_id, prompts = generating_generation(pipeline, str(broke.id))

    with pytest.raises(InsufficientCreditsException) as exc_info:
        run(pipeline.generate_one(generation_id, str(broke.id), ImageType.MAIN, prompts["main"]))

    assert exc_info.value.status_code == 402
    assert adapter.render_calls == []
    assert db.generated_images == {}
    assert db.objects == {}
    assert _usage(services, str(broke.id)) == []


def test_one_credit_buys_one_image(pipeline, services, db):
    buyer = db.create_user(email="buyer@example.com", credits=1)
    generation_id, prompts = generating_generation(pipeline, str(buyer.id))

    result = run(pipeline.generate_one(generation_id, str(buyer.id), ImageType.MAIN,
                                       prompts["main"]))

    assert services.ledger.balance(str(buyer.id)) == 0
    usage = _usage(services, str(buyer.id))
    assert len(usage) == 1
    assert usage[0].amount == -1
    assert str(usage[0].generation_id) == generation_id

    detail = pipeline.get_generation(generation_id, str(buyer.id))
    assert detail.generation.credits_used == 1
    slot = detail.images[0]
    assert slot.status == ImageStatus.COMPLETED
    assert slot.storage_path == f"{generation_id}/main_v1.png"
    assert slot.image_url.startswith("memory://generated/")
    assert result.version == 1
    assert result.credits_used == 1
    assert result.storage_path in db.objects


def test_adapter_failure_marks_slot_failed_and_costs_nothing(pipeline, services, adapter, user):
    generation_id, prompts = generating_generation(pipeline, str(user.id))
    adapter.image_errors = [RuntimeError("quota exceeded")]

    with pytest.raises(ImageGenerationFailedException) as exc_info:
        run(pipeline.generate_one(generation_id, str(user.id), ImageType.LIFESTYLE,
                                  prompts["lifestyle"]))

    assert exc_info.value.image_type == "lifestyle"
    assert "quota exceeded" in exc_info.value.detail
    assert services.ledger.balance(str(user.id)) == 10
    detail = pipeline.get_generation(generation_id, str(user.id))
    assert detail.images[0].status == ImageStatus.FAILED
    assert "quota exceeded" in detail.images[0].error
    assert detail.generation.status == GenerationStatus.GENERATING

    # Retrying the same slot succeeds and charges exactly once
    result = run(pipeline.generate_one(generation_id, str(user.id), ImageType.LIFESTYLE,
                                       prompts["lifestyle"]))
    assert result.version == 1
    assert services.ledger.balance(str(user.id)) == 9
    assert len(_usage(services, str(user.id))) == 1


def test_render_timeout_fails_slot(settings, db, adapter):
    settings.image_timeout_seconds = 0.05
    services = build_memory_services(settings, db=db, adapter=adapter)
    owner = db.create_user(credits=5)
    generation_id, prompts = generating_generation(services.pipeline, str(owner.id))
    adapter.image_delay = 1.0

    with pytest.raises(ImageGenerationFailedException) as exc_info:
        run(services.pipeline.generate_one(generation_id, str(owner.id), ImageType.MAIN,
                                           prompts["main"]))

    assert "timed out" in exc_info.value.detail
    assert services.ledger.balance(str(owner.id)) == 5


def test_generate_before_framework_selection_is_conflict(pipeline, adapter, user):
    generation_id, _ = analyzed_generation(pipeline, str(user.id))

    with pytest.raises(InvalidStateTransitionException):
        run(pipeline.generate_one(generation_id, str(user.id), ImageType.MAIN, "a prompt"))
    assert adapter.render_calls == []


def test_blank_prompt_is_validation_error(pipeline, user):
    generation_id, _ = generating_generation(pipeline, str(user.id))

    with pytest.raises(ValidationException):
        run(pipeline.generate_one(generation_id, str(user.id), ImageType.MAIN, "  "))


def test_generation_completes_when_every_slot_is_terminal(pipeline, adapter, user):
    generation_id, prompts = generating_generation(pipeline, str(user.id))
    adapter.image_errors = [RuntimeError("blocked")]

    with pytest.raises(ImageGenerationFailedException):
        run(pipeline.generate_one(generation_id, str(user.id), ImageType.COMPARISON,
                                  prompts["comparison"]))
    for image_type in IMAGE_TYPES[:-1]:
        run(pipeline.generate_one(generation_id, str(user.id), image_type,
                                  prompts[image_type.value]))
        status = pipeline.get_generation(generation_id, str(user.id)).generation.status
        expected = GenerationStatus.COMPLETED if image_type == IMAGE_TYPES[-2] \
            else GenerationStatus.GENERATING
        assert status == expected

    summary = pipeline.list_generations(str(user.id))[0]
    assert summary.status == GenerationStatus.COMPLETED
    assert summary.credits_used == 4
    assert summary.image_count == 5


def test_debit_failure_after_delivery_keeps_the_image(pipeline, services, db, adapter):
    racer = db.create_user(email="racer@example.com", credits=1)
    generation_id, prompts = generating_generation(pipeline, str(racer.id))

    def spend_elsewhere():
        db.profiles[str(racer.id)]["credits"] = 0

    adapter.on_render = spend_elsewhere

    result = run(pipeline.generate_one(generation_id, str(racer.id), ImageType.MAIN,
                                       prompts["main"]))

    assert result.image_url is not None
    assert services.ledger.balance(str(racer.id)) == 0
    assert _usage(services, str(racer.id)) == []
    slot = pipeline.get_generation(generation_id, str(racer.id)).images[0]
    assert slot.status == ImageStatus.COMPLETED
    reconcile = [row for row in db.system_logs
                 if row["source"] == "ledger" and row["log_type"] == "error"]
    assert len(reconcile) == 1
    assert reconcile[0]["details"]["reconcile"] is True
    assert reconcile[0]["details"]["generation_id"] == generation_id


def test_storage_failure_fails_slot_without_charging(pipeline, services, db, user):
    generation_id, prompts = generating_generation(pipeline, str(user.id))
    pipeline.storage = FailingUploadStorage(db)

    with pytest.raises(DatabaseException) as exc_info:
        run(pipeline.generate_one(generation_id, str(user.id), ImageType.MAIN, prompts["main"]))

    assert exc_info.value.detail == "Failed to upload image"
    assert services.ledger.balance(str(user.id)) == 10
    assert _usage(services, str(user.id)) == []
    slot = pipeline.get_generation(generation_id, str(user.id)).images[0]
    assert slot.status == ImageStatus.FAILED
    assert slot.error == "Failed to save generated image"
    assert slot.storage_path is None


def test_cancelled_render_does_not_leave_slot_generating(pipeline, services, adapter, user):
    generation_id, prompts = generating_generation(pipeline, str(user.id))
    adapter.image_delay = 1.0

    async def cancel_mid_render():
        task = asyncio.ensure_future(pipeline.generate_one(
            generation_id, str(user.id), ImageType.MAIN, prompts["main"]))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    run(cancel_mid_render())

    slot = pipeline.get_generation(generation_id, str(user.id)).images[0]
    assert slot.status == ImageStatus.FAILED
    assert "cancelled" in slot.error
    assert services.ledger.balance(str(user.id)) == 10


# ==============================================================
# regenerate
# ==============================================================
def test_regenerate_keeps_previous_versions(pipeline, services, db, adapter, user):
    generation_id, prompts = generating_generation(pipeline, str(user.id))
    first = run(pipeline.generate_one(generation_id, str(user.id), ImageType.MAIN,
                                      prompts["main"]))

    second = run(pipeline.regenerate(generation_id, str(user.id), ImageType.MAIN,
                                     note="Brighter lighting", reference_image=inline_png()))

    assert first.image_id == second.image_id
    assert (first.version, second.version) == (1, 2)
    assert second.storage_path == f"{generation_id}/main_v2.png"
    assert first.storage_path in db.objects and second.storage_path in db.objects
    assert adapter.render_calls[-1] == prompts["main"] + "\n\nAdditional instructions: Brighter lighting"
    assert services.ledger.balance(str(user.id)) == 8

    slot = pipeline.get_generation(generation_id, str(user.id)).images[0]
    assert slot.version == 2
    assert slot.storage_path == second.storage_path


def test_concurrent_regenerations_get_distinct_versions(pipeline, services, db, adapter, user):
    generation_id, prompts = generating_generation(pipeline, str(user.id))
    run(pipeline.generate_one(generation_id, str(user.id), ImageType.MAIN, prompts["main"]))
    adapter.image_delay = 0.05

    async def regenerate_twice():
        return await asyncio.gather(
            pipeline.regenerate(generation_id, str(user.id), ImageType.MAIN),
            pipeline.regenerate(generation_id, str(user.id), ImageType.MAIN))

    results = run(regenerate_twice())

    assert sorted(result.version for result in results) == [2, 3]
    assert {f"{generation_id}/main_v{n}.png" for n in (1, 2, 3)} <= set(db.objects)
    slot = pipeline.get_generation(generation_id, str(user.id)).images[0]
    assert slot.status == ImageStatus.COMPLETED
    assert slot.version == 3
    assert slot.storage_path == f"{generation_id}/main_v3.png"
    assert services.ledger.balance(str(user.id)) == 7


def test_failed_regeneration_keeps_the_delivered_image(pipeline, services, adapter, user):
    generation_id, prompts = generating_generation(pipeline, str(user.id))
    first = run(pipeline.generate_one(generation_id, str(user.id), ImageType.MAIN,
                                      prompts["main"]))
    adapter.image_errors = [RuntimeError("quota exceeded")]

    with pytest.raises(ImageGenerationFailedException):
        run(pipeline.regenerate(generation_id, str(user.id), ImageType.MAIN))

    slot = pipeline.get_generation(generation_id, str(user.id)).images[0]
    assert slot.status == ImageStatus.COMPLETED
    assert "quota exceeded" in slot.error
    assert slot.storage_path == first.storage_path
    assert slot.image_url
    assert services.ledger.balance(str(user.id)) == 9

    second = run(pipeline.regenerate(generation_id, str(user.id), ImageType.MAIN))
    assert second.version == 2
    assert pipeline.get_generation(generation_id, str(user.id)).images[0].error is None


def test_regenerate_after_failed_first_render_stays_at_version_one(pipeline, adapter, user):
    generation_id, prompts = generating_generation(pipeline, str(user.id))
    adapter.image_errors = [RuntimeError("blocked")]
    with pytest.raises(ImageGenerationFailedException):
        run(pipeline.generate_one(generation_id, str(user.id), ImageType.INFOGRAPHIC_1,
                                  prompts["infographic_1"]))

    result = run(pipeline.regenerate(generation_id, str(user.id), ImageType.INFOGRAPHIC_1))

    assert result.version == 1
    assert adapter.render_calls[-1] == prompts["infographic_1"]


def test_regenerate_without_any_prompt_is_validation_error(pipeline, user):
    generation_id, _ = analyzed_generation(pipeline, str(user.id))

    with pytest.raises(ValidationException):
        run(pipeline.regenerate(generation_id, str(user.id), ImageType.MAIN))


# ==============================================================
# reads
# ==============================================================
def test_reads_are_owner_scoped(pipeline, db, user):
    generation_id, _ = analyzed_generation(pipeline, str(user.id))
    other = db.create_user(email="other@example.com")

    with pytest.raises(GenerationNotFoundException):
        pipeline.get_generation(generation_id, str(other.id))
    assert pipeline.list_generations(str(other.id)) == []
    assert [str(item.id) for item in pipeline.list_generations(str(user.id))] == [generation_id]
