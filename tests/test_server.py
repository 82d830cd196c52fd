"""End-to-end tests for sluice.app.Server through the ASGI interface."""

import logging
from dataclasses import dataclass
from typing import Any

import pytest

from sluice import Context, InvariantError, Next, Response, Server, ServerConfig, respond
from sluice.http.forms import UploadFile
from sluice.testing import TestClient
from sluice.validation import ValidationError, require_not_blank


def _tag(name: str):
    async def middleware(ctx: Context, next: Next) -> Response:
        response = await next(ctx)
        return response.add_header("X-Chain", name)

    return middleware


class TestRouting:
    @pytest.mark.asyncio
    async def test_json_handler(self) -> None:
        server = Server()

        async def get_user(ctx: Context) -> Response:
            return respond().json({"id": ctx.path_value("id")})

        server.get("/users/{id}", get_user)

        async with TestClient(server) as client:
            response = await client.get("/users/42")

        assert response.status == 200
        assert response.header("content-type") == "application/json;charset=UTF-8"
        assert response.json() == {"id": "42"}

    @pytest.mark.asyncio
    async def test_decorator_registration(self) -> None:
        server = Server()

        @server.route("/items", methods=["POST", "PUT"])
        def upsert(ctx: Context) -> Response:
            return respond().created({"method": ctx.request.method})

        async with TestClient(server) as client:
            posted = await client.post("/items", json={})
            put = await client.put("/items", json={})

        assert posted.status == 201
        assert put.json() == {"method": "PUT"}

    def test_decorator_rejects_unknown_method(self) -> None:
        with pytest.raises(ValueError):
            Server().route("/x", methods=["BREW"])

    @pytest.mark.asyncio
    async def test_not_found(self) -> None:
        server = Server()
        server.get("/users", lambda ctx: respond())

        async with TestClient(server) as client:
            response = await client.get("/posts")

        assert response.status == 404
        assert response.text == "404 page not found"
        assert response.header("x-content-type-options") == "nosniff"

    @pytest.mark.asyncio
    async def test_method_not_allowed(self) -> None:
        server = Server()
        server.get("/users", lambda ctx: respond())

        async with TestClient(server) as client:
            response = await client.delete("/users")

        assert response.status == 405
        assert response.text == "405 method not allowed"
        assert response.header("allow") == "GET, HEAD"

    @pytest.mark.asyncio
    async def test_head_uses_get_handler_without_body(self) -> None:
        server = Server()
        server.get("/hello", lambda ctx: respond().text("hello"))

        async with TestClient(server) as client:
            response = await client.head("/hello")

        assert response.status == 200
        assert response.header("content-type") == "text/plain;charset=UTF-8"


class TestMiddleware:
    @pytest.mark.asyncio
    async def test_server_group_and_route_order(self) -> None:
        server = Server()
        server.use(_tag("server"))
        api = server.group("/api", _tag("group"))
        api.get("/ping", lambda ctx: respond().text("pong"), _tag("route"))

        async with TestClient(server) as client:
            response = await client.get("/api/ping")

        assert response.text == "pong"
        # innermost middleware decorates first
        assert response.header_list("x-chain") == ["route", "group", "server"]

    @pytest.mark.asyncio
    async def test_use_after_registration_does_not_apply(self) -> None:
        server = Server()
        server.get("/early", lambda ctx: respond())
        server.use(_tag("late"))
        server.get("/late", lambda ctx: respond())

        async with TestClient(server) as client:
            early = await client.get("/early")
            late = await client.get("/late")

        assert early.header_list("x-chain") == []
        assert late.header_list("x-chain") == ["late"]

    @pytest.mark.asyncio
    async def test_nested_group(self) -> None:
        server = Server()
        v1 = server.group("/api").group("/v1", _tag("v1"))
        v1.get("/status", lambda ctx: respond().text("ok"))

        async with TestClient(server) as client:
            response = await client.get("/api/v1/status")

        assert response.status == 200
        assert response.header_list("x-chain") == ["v1"]

    @pytest.mark.asyncio
    async def test_short_circuit_skips_handler(self) -> None:
        server = Server()
        calls: list[str] = []

        async def require_token(ctx: Context, next: Next) -> Response:
            if ctx.authorization != "Bearer secret":
                return respond().unauthorized({"code": "Unauthorized"})
            return await next(ctx)

        def handler(ctx: Context) -> Response:
            calls.append("handler")
            return respond().text("secret")

        server.get("/private", handler, require_token)

        async with TestClient(server) as client:
            denied = await client.get("/private")
            allowed = await client.get("/private", headers={"Authorization": "Bearer secret"})

        assert denied.status == 401
        assert denied.json() == {"code": "Unauthorized"}
        assert allowed.text == "secret"
        assert calls == ["handler"]


class TestErrors:
    @pytest.mark.asyncio
    async def test_exception_becomes_500(self, caplog: pytest.LogCaptureFixture) -> None:
        server = Server()

        def broken(ctx: Context) -> Response:
            raise RuntimeError("database exploded")

        server.get("/broken", broken)

        with caplog.at_level(logging.ERROR, logger="sluice.server"):
            async with TestClient(server) as client:
                response = await client.get("/broken")

        assert response.status == 500
        assert response.json() == {
            "code": "InternalServerError",
            "message": "Internal Server Error",
        }
        assert "internal error ip=127.0.0.1 method=GET path=/broken status=500" in caplog.text
        (record,) = [r for r in caplog.records if r.name == "sluice.server"]
        assert record.ip == "127.0.0.1"
        assert record.status == 500
        assert record.duration >= 0
        assert record.exc_info is not None

    @pytest.mark.asyncio
    async def test_debug_exposes_exception(self) -> None:
        server = Server(ServerConfig(debug=True))
        server.get("/broken", lambda ctx: 1 / 0)

        async with TestClient(server) as client:
            response = await client.get("/broken")

        assert response.status == 500
        assert response.json()["message"].startswith("ZeroDivisionError")

    @pytest.mark.asyncio
    async def test_handler_returning_none_raises(self) -> None:
        server = Server()
        server.get("/nothing", lambda ctx: None)

        async with TestClient(server) as client:
            with pytest.raises(InvariantError):
                await client.get("/nothing")

    @pytest.mark.asyncio
    async def test_unencodable_json_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        server = Server()
        server.get("/bad", lambda ctx: respond().json({"value": object()}))

        with caplog.at_level(logging.ERROR, logger="sluice.server"):
            async with TestClient(server) as client:
                response = await client.get("/bad")

        assert response.status == 500
        assert response.body == b""
        assert "unable to write response" in caplog.text

    @pytest.mark.asyncio
    async def test_client_disconnect_sends_nothing(self) -> None:
        server = Server()

        async def echo(ctx: Context) -> Response:
            return respond().body("application/octet-stream", await ctx.get_raw_data())

        server.post("/echo", echo)

        async with TestClient(server) as client:
            response = await client.request("POST", "/echo", disconnect=True)

        assert response.status == 0
        assert response.body == b""


@dataclass
class _CreateUser:
    name: str

    def validate(self) -> ValidationError | None:
        return require_not_blank(self.name, "name")


class TestRequests:
    @pytest.mark.asyncio
    async def test_bind_json(self) -> None:
        server = Server()

        async def create(ctx: Context) -> Response:
            data = await ctx.bind_json(_CreateUser)
            if isinstance(data, Response):
                return data
            return respond().created({"name": data.name}).location("/users/1")

        server.post("/users", create)

        async with TestClient(server) as client:
            created = await client.post("/users", json={"name": "Ada"})
            invalid = await client.post("/users", json={"name": ""})

        assert created.status == 201
        assert created.header("location") == "/users/1"
        assert invalid.status == 400
        assert invalid.json()["errors"][0]["field"] == "name"

    @pytest.mark.asyncio
    async def test_form_values(self) -> None:
        server = Server()

        async def login(ctx: Context) -> Response:
            form = await ctx.form_values()
            return respond().text(form.get("user") or "")

        server.post("/login", login)

        async with TestClient(server) as client:
            response = await client.post("/login", form={"user": "ada"})

        assert response.text == "ada"

    @pytest.mark.asyncio
    async def test_uploads_closed_after_response(self) -> None:
        server = Server()
        seen: list[UploadFile] = []

        async def upload(ctx: Context) -> Response:
            form = await ctx.form_values()
            seen.append(form.files["doc"])
            return respond().text(form.files["doc"].filename)

        server.post("/upload", upload)
        body = (
            b"--b\r\n"
            b'Content-Disposition: form-data; name="doc"; filename="a.txt"\r\n'
            b"Content-Type: text/plain\r\n\r\n"
            b"hello\r\n"
            b"--b--\r\n"
        )

        async with TestClient(server) as client:
            response = await client.post(
                "/upload",
                headers={"Content-Type": "multipart/form-data; boundary=b"},
                body=body,
            )

        assert response.text == "a.txt"
        assert seen[0].file.closed

    @pytest.mark.asyncio
    async def test_conditional_get(self) -> None:
        server = Server()

        def article(ctx: Context) -> Response:
            if (early := ctx.conditional_if_none_match("v7")) is not None:
                return early
            return respond().etag("v7").text("body")

        server.get("/article", article)

        async with TestClient(server) as client:
            fresh = await client.get("/article")
            cached = await client.get("/article", headers={"If-None-Match": '"v7"'})

        assert fresh.status == 200
        assert fresh.header("etag") == '"v7"'
        assert cached.status == 304
        assert cached.body == b""

    @pytest.mark.asyncio
    async def test_trusted_proxy_client_ip(self) -> None:
        server = Server()
        server.set_remote_ip_headers("X-Forwarded-For").set_trust_remote_ip_headers(True)
        server.get("/ip", lambda ctx: respond().json([ctx.client_ip, ctx.remote_ip]))

        async with TestClient(server, client=("10.0.0.2", 4000)) as client:
            response = await client.get("/ip", headers={"X-Forwarded-For": "203.0.113.9"})

        assert response.json() == ["203.0.113.9", "10.0.0.2"]

    @pytest.mark.asyncio
    async def test_cookies_written(self) -> None:
        server = Server()
        server.get(
            "/login",
            lambda ctx: respond().cookie("a", "1").cookie("b", "2", http_only=True).no_content(),
        )

        async with TestClient(server) as client:
            response = await client.get("/login")

        assert response.header_list("set-cookie") == ["a=1; Path=/", "b=2; Path=/; HttpOnly"]

    @pytest.mark.asyncio
    async def test_after_commit_runs(self) -> None:
        server = Server()
        seen: list[int] = []

        def handler(ctx: Context) -> Response:
            response = respond().text("ok")
            return response.after_commit(lambda: seen.append(response.status_code))

        server.get("/", handler)

        async with TestClient(server) as client:
            await client.get("/")

        assert seen == [200]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_hooks_run_around_client(self) -> None:
        server = Server()
        events: list[str] = []

        @server.on_startup
        async def connect() -> None:
            events.append("startup")

        @server.on_shutdown
        def disconnect() -> None:
            events.append("shutdown")

        async with TestClient(server):
            assert events == ["startup"]
        assert events == ["startup", "shutdown"]

    @pytest.mark.asyncio
    async def test_asgi_lifespan(self) -> None:
        server = Server()
        events: list[str] = []
        server.on_startup(lambda: events.append("startup"))
        server.on_shutdown(lambda: events.append("shutdown"))

        incoming = [{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}]
        sent: list[dict[str, Any]] = []

        async def receive() -> dict[str, Any]:
            return incoming.pop(0)

        async def send(message: dict[str, Any]) -> None:
            sent.append(message)

        await server({"type": "lifespan"}, receive, send)

        assert events == ["startup", "shutdown"]
        assert [m["type"] for m in sent] == [
            "lifespan.startup.complete",
            "lifespan.shutdown.complete",
        ]

    @pytest.mark.asyncio
    async def test_startup_failure_reported(self) -> None:
        server = Server()

        @server.on_startup
        def fail() -> None:
            raise RuntimeError("no database")

        sent: list[dict[str, Any]] = []

        async def receive() -> dict[str, Any]:
            return {"type": "lifespan.startup"}

        async def send(message: dict[str, Any]) -> None:
            sent.append(message)

        await server({"type": "lifespan"}, receive, send)
        assert sent == [{"type": "lifespan.startup.failed", "message": "no database"}]

    @pytest.mark.asyncio
    async def test_frozen_after_first_request(self) -> None:
        server = Server()
        server.get("/", lambda ctx: respond())

        async with TestClient(server) as client:
            await client.get("/")

        assert server.frozen is True
        with pytest.raises(RuntimeError):
            server.get("/late", lambda ctx: respond())
        with pytest.raises(RuntimeError):
            server.use(_tag("late"))
        with pytest.raises(RuntimeError):
            server.set_max_multipart_memory(1024)


class TestConfiguration:
    def test_zero_workers_means_one(self) -> None:
        assert ServerConfig().worker_count == 1
        assert ServerConfig(workers=4).worker_count == 4

    def test_setters_swap_snapshot(self) -> None:
        server = Server()
        before = server.config
        server.set_max_multipart_memory(1024)
        assert server.config is not before
        assert before.max_multipart_memory != 1024
        assert server.config.max_multipart_memory == 1024
        assert server.context_config.max_multipart_memory == 1024

    def test_ip_settings_reach_resolver(self) -> None:
        server = Server()
        server.set_remote_ip_headers("X-Real-IP").set_trust_remote_ip_headers(True)
        resolver = server.context_config.ip_resolver
        assert resolver.remote_ip_headers == ("X-Real-IP",)
        assert resolver.trust_remote_ip_headers is True

    def test_configure_unknown_field(self) -> None:
        with pytest.raises(TypeError):
            Server().configure(colour="blue")

    def test_snapshot_is_immutable(self) -> None:
        config = ServerConfig()
        with pytest.raises(AttributeError):
            config.port = 9000  # type: ignore[misc]
