import json

import pytest

from firecracker_sdk.operations import (
    DEFAULT_TIMEOUT,
    PUT_MMDS,
    PUT_MMDS_CONFIG,
    ErrorPayload,
    NoContent,
    Operation,
    OperationError,
    OperationParams,
)


def test_no_content_on_204():
    result = PUT_MMDS.read_response(204, b"")
    assert isinstance(result, NoContent)
    assert result.code == 204
    assert result.payload is None
    assert str(result) == "[PUT /mmds][204] putMmdsNoContent "


def test_204_body_ignored():
    result = PUT_MMDS_CONFIG.read_response(204, b"not json")
    assert result.code == 204
    assert str(result).startswith("[PUT /mmds/config][204] putMmdsConfigNoContent")


def test_bad_request_raises_with_payload():
    body = json.dumps({"fault_message": "bad input"}).encode()
    with pytest.raises(OperationError) as info:
        PUT_MMDS.read_response(400, body)
    err = info.value
    assert err.code == 400
    assert err.bad_request is True
    assert err.fault_message == "bad input"
    assert str(err).startswith("[PUT /mmds][400] putMmdsBadRequest  ")
    assert "bad input" in str(err)


def test_server_error_raises_default():
    with pytest.raises(OperationError) as info:
        PUT_MMDS_CONFIG.read_response(500, '{"fault_message": "boom"}')
    err = info.value
    assert err.code == 500
    assert err.bad_request is False
    assert err.payload == ErrorPayload("boom")
    assert str(err).startswith("[PUT /mmds/config][500] putMmdsConfig default  ")


def test_other_success_code_returns_result():
    result = PUT_MMDS.read_response(200, '{"fault_message": "fine"}')
    assert result.code == 200
    assert result.payload == ErrorPayload("fine")
    assert "putMmds default" in str(result)


def test_empty_error_body_gives_empty_payload():
    with pytest.raises(OperationError) as info:
        PUT_MMDS.read_response(400, b"")
    assert info.value.payload == ErrorPayload()
    assert info.value.fault_message == ""


def test_invalid_json_error_body():
    with pytest.raises(ValueError):
        PUT_MMDS.read_response(400, b"{not json")


def test_non_object_error_body():
    with pytest.raises(ValueError):
        PUT_MMDS.read_response(500, b"[1, 2]")


def test_custom_operation_prefix():
    op = Operation("putThing", "PUT", "/thing")
    with pytest.raises(OperationError) as info:
        op.read_response(404, None)
    assert str(info.value).startswith("[PUT /thing][404] putThing default")


def test_params_defaults():
    params = OperationParams()
    assert params.body is None
    assert params.timeout == DEFAULT_TIMEOUT
    assert params.timeout == 30.0
    assert params.encode_body() is None


def test_params_are_immutable():
    params = OperationParams()
    changed = params.with_body({"foo": "bar"}).with_timeout(0.5)
    assert params.body is None
    assert params.timeout == DEFAULT_TIMEOUT
    assert changed.body == {"foo": "bar"}
    assert changed.timeout == 0.5


def test_encode_body_round_trip():
    metadata = {"foo": "bar", "baz": "qux"}
    params = OperationParams().with_body(metadata)
    assert json.loads(params.encode_body()) == metadata


def test_encode_dataclass_body():
    params = OperationParams().with_body(ErrorPayload("msg"))
    assert json.loads(params.encode_body()) == {"fault_message": "msg"}