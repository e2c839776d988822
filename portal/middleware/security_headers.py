"""
Response hardening for a JSON-only API.

Every response gets the headers in ``SECURITY_HEADERS`` unless the view
already set them, and loses its ``Server`` banner. Nothing here is ever
rendered by a browser as a page (the API returns JSON and attachment
downloads), so the content policy allows no sources at all.
"""

SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'self'; base-uri 'none'; form-action 'none'",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(), payment=()",
    "Cross-Origin-Resource-Policy": "same-site",
}


def init_security_headers(app, headers=None):
    applied = dict(SECURITY_HEADERS, **(headers or {}))

    @app.after_request
    def _harden_response(response):
        for name, value in applied.items():
            response.headers.setdefault(name, value)
        response.headers.pop("Server", None)
        return response
