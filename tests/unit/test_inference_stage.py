"""
Unit tests for InferenceStage admission (busy policies) and output checks.
"""
import numpy as np
import pytest

from tests.helpers import BlockingModel, FakeModel, ThreadRunner, make_buffer, wait_for
from visual_clutter.core.events import PixelFormat, Tensor
from visual_clutter.core.protocols import InputSpec
from visual_clutter.core.stages.inference import InferenceStage, resolve_busy_policy
from visual_clutter.utils.failures import (
    BusyError, ConfigError, InferenceError, InvalidInputError, SupersededError,
)


class TestBusyPolicyResolution:

    def test_keeping_every_frame_forces_block(self):
        assert resolve_busy_policy(False, "reject") == "block"
        assert resolve_busy_policy(False, "replace") == "block"

    def test_drop_mode_keeps_configured_policy(self):
        assert resolve_busy_policy(True, "reject") == "reject"
        assert resolve_busy_policy(True) == "replace"

    def test_unknown_policy(self):
        with pytest.raises(ConfigError):
            resolve_busy_policy(True, "skip")
        with pytest.raises(ConfigError):
            InferenceStage(FakeModel(), busy_policy="skip")

    def test_unknown_model_variant(self):
        with pytest.raises(ConfigError):
            InferenceStage(FakeModel(variant="pose"))


class TestInfer:
    """Tests for a single inference call"""

    def test_returns_model_tensor(self, fake_model):
        stage = InferenceStage(fake_model)
        tensor = stage.infer(make_buffer(sequence=4))

        assert tensor.shape == (1, 3, 2, 2)
        assert fake_model.calls == [4]
        assert stage.stats.completed == 1
        assert not stage.busy

    def test_wraps_raw_arrays(self):
        stage = InferenceStage(FakeModel(tensor=np.zeros((1, 2, 1, 1))))
        assert isinstance(stage.infer(make_buffer()), Tensor)

    def test_pixel_format_mismatch(self):
        model = FakeModel(input_spec=InputSpec(pixel_format=PixelFormat.BGR))
        stage = InferenceStage(model)

        with pytest.raises(InvalidInputError):
            stage.infer(make_buffer())
        assert model.calls == []
        assert stage.stats.failed == 1

    def test_dimension_mismatch(self):
        model = FakeModel(input_spec=InputSpec(pixel_format=PixelFormat.BGRA, width=640, height=480))
        with pytest.raises(InvalidInputError):
            InferenceStage(model).infer(make_buffer(width=4, height=3))

    def test_rejects_non_buffer(self, fake_model):
        with pytest.raises(InvalidInputError):
            InferenceStage(fake_model).infer(np.zeros((3, 4, 4)))

    def test_model_exception_becomes_inference_error(self):
        model = FakeModel(error=RuntimeError("cuda out of memory"))
        stage = InferenceStage(model)

        with pytest.raises(InferenceError) as exc_info:
            stage.infer(make_buffer(sequence=0))
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert not stage.busy

        # Stage stays usable after a failure
        model.error = None
        stage.infer(make_buffer(sequence=1))
        assert stage.stats.failed == 1
        assert stage.stats.completed == 1

    def test_non_numeric_output(self):
        stage = InferenceStage(FakeModel(tensor="not a tensor"))
        with pytest.raises(InferenceError):
            stage.infer(make_buffer())

    def test_wrong_output_rank(self):
        with pytest.raises(InferenceError):
            InferenceStage(FakeModel(tensor=np.zeros((2, 2)))).infer(make_buffer())

    def test_detection_accepts_rank_two_and_three(self):
        for shape in [(1, 4, 7), (4, 7)]:
            stage = InferenceStage(FakeModel(tensor=np.zeros(shape), variant="detection"))
            assert stage.infer(make_buffer()).shape == shape


class TestBusyPolicies:
    """At most one model call in flight; the policy decides what happens to the rest"""

    def test_reject_while_busy(self):
        model = BlockingModel()
        stage = InferenceStage(model, busy_policy="reject")

        first = ThreadRunner(stage.infer, make_buffer(sequence=0)).start()
        assert model.entered.wait(2)
        assert stage.busy

        with pytest.raises(BusyError):
            stage.infer(make_buffer(sequence=1))
        assert model.calls == [0]

        model.release.set()
        assert first.join()
        assert first.error is None
        assert stage.stats.rejected == 1

        stage.infer(make_buffer(sequence=2))
        assert model.calls == [0, 2]

    def test_replace_supersedes_waiting_call(self):
        model = BlockingModel()
        stage = InferenceStage(model, busy_policy="replace")

        first = ThreadRunner(stage.infer, make_buffer(sequence=0)).start()
        assert model.entered.wait(2)
        second = ThreadRunner(stage.infer, make_buffer(sequence=1)).start()
        assert wait_for(lambda: stage.waiting == 1)
        third = ThreadRunner(stage.infer, make_buffer(sequence=2)).start()

        assert second.join()
        assert isinstance(second.error, SupersededError)

        model.release.set()
        assert first.join() and third.join()
        assert first.error is None and third.error is None
        assert model.calls == [0, 2]

    def test_block_serves_in_arrival_order(self):
        model = BlockingModel()
        stage = InferenceStage(model, busy_policy="block")

        runners = [ThreadRunner(stage.infer, make_buffer(sequence=0)).start()]
        assert model.entered.wait(2)
        for seq in (1, 2, 3):
            runners.append(ThreadRunner(stage.infer, make_buffer(sequence=seq)).start())
            assert wait_for(lambda: stage.waiting == seq)

        model.release.set()
        assert all(r.join() for r in runners)
        assert all(r.error is None for r in runners)
        assert model.calls == [0, 1, 2, 3]
        assert stage.stats.completed == 4
