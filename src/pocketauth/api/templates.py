# HTML pages for the browser-facing half of the flow.
# Created: 2026-02-20

from __future__ import annotations

from html import escape

_STYLE = """<style>
body { font-family: system-ui; max-width: 420px; margin: 40px auto; padding: 20px; }
label { display: block; margin-top: 12px; font-size: 14px; }
input[type=text], input[type=password] { width: 100%; padding: 8px; margin-top: 4px;
  border: 1px solid #d1d5db; border-radius: 6px; box-sizing: border-box; }
.btn { margin-top: 20px; padding: 10px 24px; border: none; border-radius: 6px;
  cursor: pointer; font-size: 16px; background: #2563eb; color: white; }
.btn:hover { background: #1d4ed8; }
.error { color: #b91c1c; font-size: 14px; margin-top: 4px; }
.scopes { background: #f3f4f6; padding: 12px; border-radius: 8px; margin: 16px 0; }
.scope { display: inline-block; background: #dbeafe; padding: 4px 8px;
  border-radius: 4px; margin: 2px; font-size: 14px; }
</style>"""

_LOGIN_HTML = """<!DOCTYPE html>
<html><head><title>Sign in - {client_name}</title>
{style}</head><body>
<h2>Sign in to continue to {client_name}</h2>
<div class="scopes"><strong>Requested permissions:</strong><br>{scope_badges}</div>
{form_error}
<form method="POST" action="/authorize">
<input type="hidden" name="client_id" value="{client_id}">
<input type="hidden" name="redirect_uri" value="{redirect_uri}">
<input type="hidden" name="scope" value="{scope}">
<input type="hidden" name="state" value="{state}">
<input type="hidden" name="code_challenge" value="{code_challenge}">
<input type="hidden" name="code_challenge_method" value="{code_challenge_method}">
<input type="hidden" name="csrf_token" value="{csrf_token}">
<label>Username or email
<input type="text" name="login" value="{login}" autocomplete="username" required></label>
{login_error}
<label>Password
<input type="password" name="password" autocomplete="current-password" required></label>
<button type="submit" class="btn">Sign in</button>
</form></body></html>"""

_ERROR_HTML = """<!DOCTYPE html>
<html><head><title>Authorization error</title>
{style}</head><body>
<h2>Authorization error</h2>
<p><code>{error}</code></p>
<p>{description}</p>
</body></html>"""


def _error_div(message: str | None) -> str:
    return f'<div class="error">{escape(message)}</div>' if message else ""


def render_login(
    client_name: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    code_challenge: str,
    code_challenge_method: str,
    csrf_token: str,
    login: str = "",
    errors: dict[str, str] | None = None,
) -> str:
    """Login form. *errors* maps a field name (``login``, ``form``) to its message."""
    errors = errors or {}
    scope_badges = " ".join(f'<span class="scope">{escape(s)}</span>' for s in scope.split())
    return _LOGIN_HTML.format(
        style=_STYLE,
        client_name=escape(client_name),
        client_id=escape(client_id),
        redirect_uri=escape(redirect_uri),
        scope=escape(scope),
        scope_badges=scope_badges,
        state=escape(state),
        code_challenge=escape(code_challenge),
        code_challenge_method=escape(code_challenge_method),
        csrf_token=escape(csrf_token),
        login=escape(login),
        login_error=_error_div(errors.get("login")),
        form_error=_error_div(errors.get("form")),
    )


def render_error(error: str, description: str) -> str:
    return _ERROR_HTML.format(style=_STYLE, error=escape(error), description=escape(description))
