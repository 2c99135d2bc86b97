"""Tests for the REST endpoints, using the energy detector."""
import base64
import json

from fastapi.testclient import TestClient
import numpy as np
import pytest

from accentshadow.audio.codec import decode, encode
from accentshadow.audio.models import PcmBuffer
from accentshadow.core.config import Settings
from accentshadow.main import app
from accentshadow.services.processing_context import ProcessingContext
from synthetic_audio import speech_clip, speech_wav


def _client():
    app.state.processing = ProcessingContext(Settings(vad_backend="energy"))
    return TestClient(app)


def _wav_file(data, name="clip.wav"):
    return (name, data, "audio/wav")


def _audio(payload, key="audio"):
    return decode(base64.b64decode(payload[key]))


def test_health_and_vad_status():
    """Test the status endpoints after startup warm-up."""
    with _client() as client:
        assert client.get("/health").json() == {"status": "ok", "version": "0.1.0"}

        status = client.get("/vad/status").json()
        assert status["state"] == "ready"
        assert status["backend"] == "energy"


def test_boundaries_endpoint():
    """Test speech boundary detection over HTTP."""
    with _client() as client:
        response = client.post("/audio/boundaries", files={"file": _wav_file(speech_wav(3.0, 1.0, 2.0))})

    assert response.status_code == 200
    body = response.json()
    assert body["vadFailed"] is False
    assert body["originalSpeechStart"] == pytest.approx(1.0, abs=0.2)
    assert body["originalSpeechEnd"] == pytest.approx(2.0, abs=0.2)
    assert body["startTime"] == pytest.approx(body["originalSpeechStart"] - 0.1)
    assert body["endTime"] == pytest.approx(body["originalSpeechEnd"] + 0.1)


def test_boundaries_endpoint_empty_upload():
    """Test that an empty upload degrades to failed boundaries instead of an error."""
    with _client() as client:
        response = client.post("/audio/boundaries", files={"file": _wav_file(b"")})

    assert response.status_code == 200
    assert response.json()["vadFailed"] is True
    assert response.json()["status"] == "decode_failed"


def test_trim_endpoint_applies_record():
    """Test trimming with a settings-store record."""
    options = json.dumps({"padding": 0.1, "maxTrimStart": 0.5, "maxTrimEnd": 0.5})
    with _client() as client:
        response = client.post(
            "/audio/trim",
            files={"file": _wav_file(speech_wav(3.0, 1.0, 2.0))},
            data={"options": options},
        )

    body = response.json()
    assert body["trimmedStart"] == pytest.approx(0.5)
    assert body["trimmedEnd"] == pytest.approx(0.5)
    assert _audio(body).duration == pytest.approx(2.0, abs=1e-3)


def test_invalid_options_rejected():
    """Test that malformed option JSON is a client error."""
    with _client() as client:
        response = client.post(
            "/audio/trim",
            files={"file": _wav_file(speech_wav(1.0, 0.2, 0.8))},
            data={"options": "{not json"},
        )
    assert response.status_code == 400


def test_process_endpoint():
    """Test processing with silence info."""
    with _client() as client:
        response = client.post(
            "/audio/process",
            files={"file": _wav_file(speech_wav(3.0, 1.0, 2.0))},
            data={"trim": "false"},
        )

    body = response.json()
    assert body["vadUsed"] is True
    assert body["silenceInfo"]["trimmedStart"] == 0.0
    assert body["silenceInfo"]["originalSilenceStart"] > 0.5


def test_align_endpoint_with_client_boundaries():
    """Test that supplied boundaries place both onsets at the padding offset."""
    target_boundaries = json.dumps({"startTime": 0.5, "endTime": 2.0})
    user_boundaries = json.dumps({"startTime": 0.1, "endTime": 1.0})
    with _client() as client:
        response = client.post(
            "/audio/align",
            files={
                "audio1": _wav_file(speech_wav(3.0, 0.5, 2.0), "target.wav"),
                "audio2": _wav_file(speech_wav(1.5, 0.1, 1.0), "user.wav"),
            },
            data={"boundaries1": target_boundaries, "boundaries2": user_boundaries, "padding_ms": "200"},
        )

    body = response.json()
    first, second = _audio(body, "audio1"), _audio(body, "audio2")
    assert body["alignmentInfo"]["method"] == "end_padding"
    assert first.length == second.length == 30400
    assert int(np.argmax(first.samples[0] != 0)) == 3200
    assert int(np.argmax(second.samples[0] != 0)) == 3200


def test_align_recordings_endpoint():
    """Test end-to-end alignment of raw recordings."""
    with _client() as client:
        response = client.post(
            "/audio/align-recordings",
            files={
                "target": _wav_file(speech_wav(3.0, 0.5, 2.0), "target.wav"),
                "user": _wav_file(speech_wav(1.5, 0.1, 1.0), "user.wav"),
            },
        )

    body = response.json()
    assert _audio(body, "targetAudio").length == _audio(body, "userAudio").length
    assert 0.0 <= body["alignmentQuality"] <= 1.0
    assert body["vadUsed"] is True


def test_levels_endpoint():
    """Test level analysis, silence serialization and decode errors."""
    silence = encode(PcmBuffer.silence(1, 16000, 16000))
    with _client() as client:
        loud = client.post("/audio/levels", files={"file": _wav_file(speech_wav(1.0, 0.0, 1.0))}).json()
        quiet = client.post("/audio/levels", files={"file": _wav_file(silence)}).json()
        broken = client.post("/audio/levels", files={"file": _wav_file(b"")})

    assert loud["lufs"] < 0
    assert loud["peak"] == pytest.approx(0.5, abs=1e-3)
    assert quiet["lufs"] is None
    assert broken.status_code == 422
    assert broken.json()["error"] == "DecodeError"


def test_normalization_gains_endpoint():
    """Test gain computation with a silent user clip."""
    payload = {"target": {"lufs": -10.0}, "user": {"lufs": None}}
    with _client() as client:
        body = client.post("/audio/normalization-gains", json=payload).json()

    assert body["referenceLUFS"] == pytest.approx(-18.0)
    assert body["targetGain"] == pytest.approx(10 ** (-8 / 20))
    assert body["userGain"] == pytest.approx(4.0)


def test_normalize_pair_endpoint():
    """Test that both clips come back with gains applied."""
    with _client() as client:
        response = client.post(
            "/audio/normalize-pair",
            files={
                "target": _wav_file(speech_wav(1.0, 0.0, 1.0), "target.wav"),
                "user": _wav_file(speech_wav(1.0, 0.0, 1.0), "user.wav"),
            },
        )

    body = response.json()
    assert response.status_code == 200
    assert body["gains"]["targetGain"] == pytest.approx(body["gains"]["userGain"])
    assert _audio(body, "targetAudio").length == 16000


def test_normalize_pair_endpoint_different_levels():
    """Test that equal-length clips 20 dB apart get gains 20 dB apart."""
    target = encode(speech_clip(1.0, 0.0, 1.0, amplitude=0.5))
    user = encode(speech_clip(1.0, 0.0, 1.0, amplitude=0.05))
    with _client() as client:
        body = client.post(
            "/audio/normalize-pair",
            files={"target": _wav_file(target, "target.wav"), "user": _wav_file(user, "user.wav")},
        ).json()

    gains = body["gains"]
    assert gains["userGain"] == pytest.approx(10 * gains["targetGain"], rel=1e-2)
    assert _audio(body, "userAudio").samples.max() == pytest.approx(
        _audio(body, "targetAudio").samples.max(), abs=1e-2
    )


def test_effects_endpoint():
    """Test the effects chain over HTTP."""
    data = speech_wav(0.5, 0.0, 0.5)
    config = json.dumps({"gain": {"enabled": True, "gain": 0.5}})
    with _client() as client:
        none = client.post("/audio/effects", files={"file": _wav_file(data)}).json()
        gained = client.post("/audio/effects", files={"file": _wav_file(data)}, data={"config": config}).json()

    assert none["effectsApplied"] == ["none"]
    assert base64.b64decode(none["audio"]) == data
    assert gained["effectsApplied"] == ["gain"]
    assert _audio(gained).samples.max() == pytest.approx(0.25, abs=1e-3)
