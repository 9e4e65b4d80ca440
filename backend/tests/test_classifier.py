import json

import pytest
from google.api_core import exceptions as google_exceptions

import classifier
from errors import ClassificationParseError, ClassificationServiceError, InvalidBin

GOOD = {"wasteType": "plastic", "quantity": "1 kg", "confidence": 0.9, "bin": "recyclables"}


class FakeResponse:
    def __init__(self, text):
        self._text = text

    @property
    def text(self):
        if self._text is None:
            raise ValueError("no parts")
        return self._text


class FakeModel:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = []

    def generate_content(self, parts, generation_config=None, request_options=None):
        self.calls.append({"parts": parts, "request_options": request_options})
        if self.error is not None:
            raise self.error
        return FakeResponse(self.text)


def _use_model(monkeypatch, model: FakeModel) -> FakeModel:
    monkeypatch.setattr(classifier, "_get_gemini_model", lambda: model)
    return model


def test_fenced_and_plain_replies_parse_identically() -> None:
    plain = json.dumps(GOOD)
    fenced = f"```json\n{plain}\n```"
    bare_fence = f"```\n{plain}\n```"

    expected = classifier.parse_classification(plain)

    assert classifier.parse_classification(fenced) == expected
    assert classifier.parse_classification(bare_fence) == expected
    assert expected.waste_type == "plastic"
    assert expected.bin == "recyclables"


def test_strip_code_fences_only_strips_outer_fence() -> None:
    assert classifier.strip_code_fences('  ```json {"a": 1} ```  ') == '{"a": 1}'
    assert classifier.strip_code_fences('{"a": "```"}') == '{"a": "```"}'


@pytest.mark.parametrize("missing", ["wasteType", "quantity", "confidence", "bin"])
def test_missing_field_is_parse_error(missing) -> None:
    reply = {k: v for k, v in GOOD.items() if k != missing}

    with pytest.raises(ClassificationParseError):
        classifier.parse_classification(json.dumps(reply))


@pytest.mark.parametrize(
    "override",
    [
        {"confidence": 90},
        {"confidence": "0.9"},
        {"confidence": True},
        {"bin": "compost heap"},
        {"wasteType": ""},
        {"quantity": 3},
    ],
)
def test_ill_typed_fields_are_parse_errors(override) -> None:
    with pytest.raises(ClassificationParseError):
        classifier.parse_classification(json.dumps({**GOOD, **override}))


@pytest.mark.parametrize("reply", ["I think it is plastic", "[1, 2]", "", "```json\n```"])
def test_non_object_replies_are_parse_errors(reply) -> None:
    with pytest.raises(ClassificationParseError):
        classifier.parse_classification(reply)


def test_bin_is_normalised() -> None:
    result = classifier.parse_classification(json.dumps({**GOOD, "bin": " Organics "}))

    assert result.bin == "organics"


def test_classify_sends_prompt_and_inline_image(monkeypatch) -> None:
    model = _use_model(monkeypatch, FakeModel(text=f"```json\n{json.dumps(GOOD)}\n```"))

    result = classifier.classify(b"\xff\xd8fake", "image/jpeg")

    assert result.confidence == 0.9
    prompt, image = model.calls[0]["parts"]
    assert prompt == classifier.WASTE_PROMPT
    assert image == {"mime_type": "image/jpeg", "data": b"\xff\xd8fake"}
    assert model.calls[0]["request_options"] == {"timeout": classifier.CLASSIFIER_TIMEOUT}


def test_classify_wraps_service_failures(monkeypatch) -> None:
    _use_model(monkeypatch, FakeModel(error=google_exceptions.ResourceExhausted("quota")))

    with pytest.raises(ClassificationServiceError):
        classifier.classify(b"img", "image/png")


def test_classify_timeout_is_service_error(monkeypatch) -> None:
    _use_model(monkeypatch, FakeModel(error=google_exceptions.DeadlineExceeded("slow")))

    with pytest.raises(ClassificationServiceError) as excinfo:
        classifier.classify(b"img", "image/png")

    assert "timed out" in str(excinfo.value)


def test_blocked_reply_is_parse_error(monkeypatch) -> None:
    _use_model(monkeypatch, FakeModel(text=None))

    with pytest.raises(ClassificationParseError):
        classifier.classify(b"img", "image/png")


def test_missing_api_key_is_service_error(monkeypatch) -> None:
    monkeypatch.setattr(classifier, "GEMINI_API_KEY", "")
    monkeypatch.setattr(classifier, "_gemini_model", None)

    with pytest.raises(ClassificationServiceError):
        classifier.classify(b"img", "image/png")


def test_contamination_required_and_optional_fields(monkeypatch) -> None:
    reply = {"contaminationPercentage": 0.25, "contaminationSummary": "Food scraps in paper"}
    model = _use_model(monkeypatch, FakeModel(text=json.dumps(reply)))

    result = classifier.classify_contamination(b"img", "image/jpeg", "Recyclables")

    assert result.target_bin == "recyclables"
    assert result.contamination_percentage == 0.25
    assert result.contamination_summary == "Food scraps in paper"
    assert result.confidence is None
    assert result.waste_type is None
    assert '"recyclables" bin' in model.calls[0]["parts"][0]


def test_contamination_keeps_well_typed_extras() -> None:
    reply = {
        "contaminationPercentage": 0.1,
        "contaminationSummary": "Mostly clean",
        "confidence": 0.8,
        "wasteType": "paper",
        "quantity": 7,
    }

    result = classifier.parse_contamination(f"```json\n{json.dumps(reply)}\n```", "landfill")

    assert result.confidence == 0.8
    assert result.waste_type == "paper"
    assert result.quantity is None


@pytest.mark.parametrize(
    "reply",
    [
        {"contaminationSummary": "x"},
        {"contaminationPercentage": 1.5, "contaminationSummary": "x"},
        {"contaminationPercentage": 0.5},
    ],
)
def test_contamination_parse_errors(reply) -> None:
    with pytest.raises(ClassificationParseError):
        classifier.parse_contamination(json.dumps(reply), "organics")


def test_contamination_rejects_unknown_bin() -> None:
    with pytest.raises(InvalidBin):
        classifier.classify_contamination(b"img", "image/jpeg", "glass")
