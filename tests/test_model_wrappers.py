"""
Tests for the ONNX model wrappers.

Sessions and the face detector are replaced with small fakes so the
pre- and post-processing can be checked without model files.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from hypothesis import given, settings
import hypothesis.strategies as st

from camera_control.errors import InferenceError
from camera_control.models.expression import FERPLUS_LABELS, ExpressionRecognizer
from camera_control.models.gesture import DirectionClassifier, FeatureExtractor
from camera_control.models.session import as_distribution, create_session, input_layout


class FakeSession:
    """Stand-in for onnxruntime.InferenceSession."""

    def __init__(self, shape, output, name="input"):
        self._inputs = [SimpleNamespace(name=name, shape=shape)]
        self.output = output
        self.feeds = []

    def get_inputs(self):
        return self._inputs

    def run(self, output_names, feeds):
        self.feeds.append(feeds)
        output = self.output(feeds) if callable(self.output) else self.output
        return [np.asarray(output, dtype=np.float32)]


class FakeDetector:
    def __init__(self, detections):
        self.detections = detections
        self.calls = 0
        self.closed = False

    def detect(self, image):
        self.calls += 1
        return SimpleNamespace(detections=self.detections)

    def close(self):
        self.closed = True


def detection(x, y, w, h, score):
    return SimpleNamespace(
        bounding_box=SimpleNamespace(origin_x=x, origin_y=y, width=w, height=h),
        categories=[SimpleNamespace(score=score)],
    )


def frame(h=100, w=100):
    rng = np.random.default_rng(0)
    return rng.integers(0, 256, size=(h, w, 3), dtype=np.uint8)


# FER+ order: neutral, happy, surprised, sad, angry, disgusted, fearful, contempt
ANGRY_OUTPUT = [[0.1, 0.05, 0.05, 0.0, 0.7, 0.05, 0.05, 0.0]]


@pytest.fixture
def mp_stub():
    with patch("camera_control.models.expression.mp", MagicMock(), create=True) as stub:
        yield stub


class TestSessionHelpers:
    def test_nchw_layout(self):
        session = FakeSession([1, 3, 224, 224], None, name="data")
        assert input_layout(session) == ("data", True, 3, 224, 224)

    def test_nhwc_layout_with_dynamic_dims(self):
        session = FakeSession(["batch", "h", "w", 3], None)
        assert input_layout(session) == ("input", False, 3, -1, -1)

    def test_non_image_input_rejected(self):
        with pytest.raises(ValueError):
            input_layout(FakeSession([1, 1280], None))

    @settings(max_examples=100)
    @given(values=st.lists(st.floats(min_value=0.0, max_value=1.0), min_size=1, max_size=8))
    def test_probabilities_pass_through(self, values):
        np.testing.assert_allclose(as_distribution(values), values)

    @settings(max_examples=100)
    @given(values=st.lists(st.floats(min_value=-20.0, max_value=20.0), min_size=2, max_size=8)
           .filter(lambda v: max(v) > 1.0 or min(v) < 0.0))
    def test_logits_are_softmaxed(self, values):
        probs = as_distribution(values)
        assert probs.sum() == pytest.approx(1.0)
        assert probs[int(np.argmax(values))] == probs.max()

    def test_declared_logits_are_softmaxed_even_in_range(self):
        probs = as_distribution([0.2, 0.3, 0.4, 0.1], logits=True)
        assert probs.sum() == pytest.approx(1.0)
        assert probs.max() < 0.3
        assert int(np.argmax(probs)) == 2

    def test_declared_probabilities_must_be_in_range(self):
        np.testing.assert_allclose(as_distribution([0.25, 0.75], logits=False), [0.25, 0.75])
        with pytest.raises(ValueError):
            as_distribution([-1.0, 3.0], logits=False)

    @pytest.mark.parametrize("values", [[], [0.1, float("nan")], [float("inf"), 0.0]])
    def test_invalid_output_rejected(self, values):
        with pytest.raises(ValueError):
            as_distribution(values)

    def test_missing_model_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            create_session(tmp_path / "missing.onnx")


class TestDirectionClassifier:
    def test_probabilities(self):
        session = FakeSession([1, 1280], [[0.1, 0.7, 0.1, 0.1]])
        prediction = DirectionClassifier(session).classify(np.ones(1280))

        assert prediction.label == "down"
        assert prediction.confidence == pytest.approx(0.7)
        assert set(prediction.scores) == {"up", "down", "left", "right"}
        assert session.feeds[0]["input"].shape == (1, 1280)
        assert session.feeds[0]["input"].dtype == np.float32

    def test_logits(self):
        session = FakeSession([1, 16], [[0.0, 0.0, 6.0, 0.0]])
        prediction = DirectionClassifier(session).classify(np.zeros(16))
        assert prediction.label == "left"
        assert 0.9 < prediction.confidence <= 1.0

    def test_declared_logits_in_probability_range(self):
        session = FakeSession([1, 16], [[0.2, 0.3, 0.4, 0.1]])
        guessed = DirectionClassifier(session).classify(np.zeros(16))
        declared = DirectionClassifier(session, output_logits=True).classify(np.zeros(16))

        assert guessed.confidence == pytest.approx(0.4)
        assert declared.label == guessed.label == "left"
        assert declared.confidence < 0.3

    def test_declared_probabilities_out_of_range(self):
        session = FakeSession([1, 16], [[0.0, 0.0, 6.0, 0.0]])
        with pytest.raises(InferenceError):
            DirectionClassifier(session, output_logits=False).classify(np.zeros(16))

    def test_label_subset(self):
        session = FakeSession([1, 4], [[0.2, 0.8]])
        classifier = DirectionClassifier(session, labels=("left", "right"))
        assert classifier.classify(np.zeros(4)).label == "right"

    def test_output_size_mismatch(self):
        session = FakeSession([1, 4], [[0.5, 0.5]])
        with pytest.raises(InferenceError):
            DirectionClassifier(session).classify(np.zeros(4))

    @pytest.mark.parametrize("labels", [(), ("up", "forward")])
    def test_invalid_labels(self, labels):
        with pytest.raises(ValueError):
            DirectionClassifier(FakeSession([1, 4], None), labels=labels)


class TestFeatureExtractor:
    def test_nchw_input(self):
        session = FakeSession([1, 3, 224, 224], np.ones((1, 1280, 1, 1)))
        features = FeatureExtractor(session).extract(frame(120, 160))

        assert features.shape == (1280,)
        assert features.dtype == np.float32
        assert session.feeds[0]["input"].shape == (1, 3, 224, 224)

    def test_nhwc_input(self):
        session = FakeSession([1, 96, 96, 3], np.ones((1, 64)))
        FeatureExtractor(session).extract(frame())
        assert session.feeds[0]["input"].shape == (1, 96, 96, 3)

    def test_dynamic_size_uses_default(self):
        session = FakeSession(["N", 3, "H", "W"], np.ones((1, 8)))
        FeatureExtractor(session).extract(frame())
        assert session.feeds[0]["input"].shape == (1, 3, 224, 224)

    def test_mobilenet_range(self):
        session = FakeSession([1, 3, 32, 32], np.ones((1, 8)))
        FeatureExtractor(session, normalization="mobilenet").extract(frame())
        tensor = session.feeds[0]["input"]
        assert tensor.min() >= -1.0
        assert tensor.max() <= 1.0

    def test_empty_frame(self):
        extractor = FeatureExtractor(FakeSession([1, 3, 32, 32], np.ones((1, 8))))
        with pytest.raises(InferenceError):
            extractor.extract(np.zeros((0, 0, 3), dtype=np.uint8))

    def test_empty_output(self):
        extractor = FeatureExtractor(FakeSession([1, 3, 32, 32], np.zeros((1, 0))))
        with pytest.raises(InferenceError):
            extractor.extract(frame())

    def test_invalid_normalization(self):
        with pytest.raises(ValueError):
            FeatureExtractor(FakeSession([1, 3, 32, 32], None), normalization="zscore")


class TestExpressionRecognizer:
    def test_no_face_returns_none(self, mp_stub):
        session = FakeSession([1, 1, 64, 64], ANGRY_OUTPUT)
        recognizer = ExpressionRecognizer(FakeDetector([]), session)

        assert recognizer.predict(frame()) is None
        assert session.feeds == []

    def test_empty_frame_returns_none(self, mp_stub):
        detector = FakeDetector([detection(10, 10, 40, 40, 0.9)])
        recognizer = ExpressionRecognizer(detector, FakeSession([1, 1, 64, 64], ANGRY_OUTPUT))
        assert recognizer.predict(np.zeros((0, 0, 3), dtype=np.uint8)) is None
        assert detector.calls == 0

    def test_scores_follow_output_labels(self, mp_stub):
        detector = FakeDetector([detection(10, 10, 40, 40, 0.9)])
        session = FakeSession([1, 1, 64, 64], ANGRY_OUTPUT)
        scores = ExpressionRecognizer(detector, session).predict(frame())

        assert scores.angry == pytest.approx(0.7)
        assert scores.neutral == pytest.approx(0.1)
        assert scores.dominant == "angry"
        assert "contempt" not in scores.to_dict()

        tensor = session.feeds[0]["input"]
        assert tensor.shape == (1, 1, 64, 64)
        assert tensor.dtype == np.float32

    def test_rgb_channels_last_model(self, mp_stub):
        session = FakeSession([1, 48, 48, 3], ANGRY_OUTPUT)
        recognizer = ExpressionRecognizer(
            FakeDetector([detection(0, 0, 50, 50, 0.8)]), session, pixel_scale=1 / 255.0
        )
        recognizer.predict(frame())
        tensor = session.feeds[0]["input"]
        assert tensor.shape == (1, 48, 48, 3)
        assert tensor.max() <= 1.0 + 1e-6

    def test_logit_output(self, mp_stub):
        logits = [[0.0, 0.0, 0.0, 0.0, 8.0, 0.0, 0.0, 0.0]]
        recognizer = ExpressionRecognizer(
            FakeDetector([detection(10, 10, 40, 40, 0.9)]), FakeSession([1, 1, 64, 64], logits)
        )
        assert recognizer.predict(frame()).angry > 0.9

    def test_declared_logits_output(self, mp_stub):
        recognizer = ExpressionRecognizer(
            FakeDetector([detection(10, 10, 40, 40, 0.9)]),
            FakeSession([1, 1, 64, 64], ANGRY_OUTPUT),
            output_logits=True,
        )
        scores = recognizer.predict(frame())
        # softmax over raw scores below 1 stays close to uniform
        assert scores.dominant == "angry"
        assert scores.angry < 0.3

    def test_most_confident_face_is_used(self, mp_stub):
        detector = FakeDetector([
            detection(60, 60, 30, 30, 0.55),
            detection(10, 20, 40, 40, 0.95),
        ])
        recognizer = ExpressionRecognizer(detector, FakeSession([1, 1, 64, 64], ANGRY_OUTPUT))
        # 10% margin on each side
        assert recognizer.detect_face(frame()) == (6, 16, 54, 64)

    def test_box_clipped_to_frame(self, mp_stub):
        detector = FakeDetector([detection(-5, -5, 200, 200, 0.9)])
        recognizer = ExpressionRecognizer(detector, FakeSession([1, 1, 64, 64], ANGRY_OUTPUT))
        assert recognizer.detect_face(frame()) == (0, 0, 100, 100)

    def test_output_size_mismatch(self, mp_stub):
        recognizer = ExpressionRecognizer(
            FakeDetector([detection(10, 10, 40, 40, 0.9)]),
            FakeSession([1, 1, 64, 64], [[0.5, 0.5]]),
        )
        with pytest.raises(InferenceError):
            recognizer.predict(frame())

    def test_output_labels_must_cover_expressions(self):
        with pytest.raises(ValueError, match="surprised"):
            ExpressionRecognizer(
                FakeDetector([]),
                FakeSession([1, 1, 64, 64], None),
                output_labels=[label for label in FERPLUS_LABELS if label != "surprised"],
            )

    def test_close(self):
        detector = FakeDetector([])
        recognizer = ExpressionRecognizer(detector, FakeSession([1, 1, 64, 64], None))
        recognizer.close()
        recognizer.close()
        assert detector.closed
