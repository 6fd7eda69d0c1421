from starlette.types import ASGIApp, Message, Receive, Scope, Send


class SecurityHeadersMiddleware:
    """Apply default security headers; responses are never cached by intermediaries."""

    def __init__(self, app: ASGIApp, enable_hsts: bool = True) -> None:
        self.app = app
        self.enable_hsts = enable_hsts

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                defaults: list[tuple[bytes, bytes]] = [
                    (b"x-content-type-options", b"nosniff"),
                    (b"x-frame-options", b"DENY"),
                    (b"referrer-policy", b"no-referrer"),
                    (b"cache-control", b"no-store"),
                ]
                if self.enable_hsts:
                    defaults.append((b"strict-transport-security", b"max-age=63072000; includeSubDomains"))

                new_headers = list(message.get("headers", []))
                existing_keys = {key.lower() for key, _ in new_headers}
                for key, value in defaults:
                    if key not in existing_keys:
                        new_headers.append((key, value))
                message["headers"] = new_headers
            await send(message)

        await self.app(scope, receive, send_with_headers)
