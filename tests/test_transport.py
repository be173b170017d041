import json
import os
import shutil
import socketserver
import tempfile
import threading
from http.server import BaseHTTPRequestHandler

import pytest

from firecracker_sdk.operations import NoContent, Operation, OperationError, OperationParams
from firecracker_sdk.transport import UnixSocketTransport

EXPECTED_ENDPOINT_PATH = "/test-operation"


class _Server(socketserver.ThreadingMixIn, socketserver.UnixStreamServer):
    daemon_threads = True


def _make_handler(records, status, reply):
    class Handler(BaseHTTPRequestHandler):
        def do_PUT(self):
            length = int(self.headers.get("Content-Length") or 0)
            body = self.rfile.read(length) if length else b""
            records.append((self.command, self.path, body))
            self.send_response(status)
            self.send_header("Content-Length", str(len(reply)))
            self.end_headers()
            if reply:
                self.wfile.write(reply)

        def log_message(self, format, *args):
            pass

    return Handler


@pytest.fixture
def serve():
    servers = []
    dirs = []

    def start(status=200, reply=b""):
        directory = tempfile.mkdtemp(prefix="fc")
        dirs.append(directory)
        path = os.path.join(directory, "api.sock")
        records = []
        server = _Server(path, _make_handler(records, status, reply))
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append(server)
        return path, records

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()
    for directory in dirs:
        shutil.rmtree(directory, ignore_errors=True)


def _operation():
    return Operation("putLogger", "PUT", EXPECTED_ENDPOINT_PATH)


def test_new_unix_socket_transport(serve):
    path, records = serve(200)
    transport = UnixSocketTransport(path, None, False)
    result = transport.submit(_operation(), OperationParams(timeout=1.0))
    assert records[0][1] == EXPECTED_ENDPOINT_PATH
    assert isinstance(result, NoContent)
    assert result.code == 200


def test_submit_sends_json_body(serve):
    path, records = serve(204)
    transport = UnixSocketTransport(path, debug=True)
    result = transport.submit(_operation(), OperationParams(body={"foo": "bar"}, timeout=1.0))
    method, url, body = records[0]
    assert method == "PUT"
    assert url == EXPECTED_ENDPOINT_PATH
    assert json.loads(body) == {"foo": "bar"}
    assert result.code == 204


def test_submit_bad_request_raises(serve):
    path, _ = serve(400, json.dumps({"fault_message": "bad input"}).encode())
    transport = UnixSocketTransport(path)
    with pytest.raises(OperationError) as info:
        transport.submit(_operation(), OperationParams(timeout=1.0))
    assert info.value.code == 400
    assert info.value.bad_request is True
    assert info.value.fault_message == "bad input"


def test_submit_missing_socket_raises():
    directory = tempfile.mkdtemp(prefix="fc")
    try:
        transport = UnixSocketTransport(os.path.join(directory, "missing.sock"))
        with pytest.raises(OSError):
            transport.submit(_operation(), OperationParams(timeout=1.0))
    finally:
        shutil.rmtree(directory, ignore_errors=True)