"""
Authentication routes for OIDC login, callback and logout.

This module implements the browser side of the authorization code flow.
All protocol work is delegated to AuthFlow; the routes only translate its
outcomes into redirects and responses.
"""

import html
import json
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from oidc_gateway.auth.bearer import get_auth_flow
from oidc_gateway.auth.flow import AuthFlow
from oidc_gateway.models import CallbackResponse
from oidc_gateway.sessions.middleware import get_session_id

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login", response_class=RedirectResponse)
async def login(
    session_id: str = Depends(get_session_id),
    auth_flow: AuthFlow = Depends(get_auth_flow),
):
    """
    Initiate OIDC login flow by redirecting to the identity provider.

    Fresh state and nonce are stored in the session for callback
    validation, replacing any pending login attempt.
    """
    authorization_url = await auth_flow.initiate_login(session_id)
    return RedirectResponse(url=authorization_url, status_code=status.HTTP_302_FOUND)


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback")
async def callback(
    request: Request,
    session_id: str = Depends(get_session_id),
    auth_flow: AuthFlow = Depends(get_auth_flow),
):
    """
    Handle the redirect back from the identity provider.

    Returns:
        200 with the token set and user info (JSON, or an auto-redirect HTML
        page when CALLBACK_RESPONSE_MODE is 'html'); a redirect to '/' on
        any failure
    """
    session = await auth_flow.handle_callback(session_id, request.query_params)
    if session is None:
        return RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)

    payload = CallbackResponse(tokenSet=session.tokens, userInfo=session.user_info)

    if auth_flow.settings.CALLBACK_RESPONSE_MODE == "html":
        return _render_success_page(
            payload,
            redirect_path=auth_flow.settings.POST_LOGIN_REDIRECT_PATH,
        )

    return JSONResponse(
        content=payload.model_dump(mode="json", exclude_none=True),
        status_code=status.HTTP_200_OK,
    )


# =============================================================================
# Logout Endpoint
# =============================================================================

@auth_router.get("/logout", response_class=RedirectResponse)
async def logout(
    request: Request,
    session_id: str = Depends(get_session_id),
    auth_flow: AuthFlow = Depends(get_auth_flow),
):
    """
    Destroy the server-side session and redirect to the provider logout page.

    Works the same whether or not the session still exists.
    """
    logout_url = await auth_flow.logout(session_id)
    request.state.session_destroyed = True
    return RedirectResponse(url=logout_url, status_code=status.HTTP_302_FOUND)


# =============================================================================
# HTML Response Templates
# =============================================================================

def _render_success_page(payload: CallbackResponse, redirect_path: str) -> HTMLResponse:
    """
    Render the login success page that hands the result to the browser app.

    The token/user JSON is published on `window.__AUTH_RESULT__` and the page
    redirects to `redirect_path` after a short delay.
    """
    # Escape '<' so a claim value cannot close the script element
    result_json = json.dumps(payload.model_dump(mode="json", exclude_none=True)).replace("<", "\\u003c")
    user_label = html.escape(payload.userInfo.username or payload.userInfo.email or payload.userInfo.sub)
    target = html.escape(redirect_path, quote=True)
    js_target = json.dumps(redirect_path)

    html_content = f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="UTF-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>Login Successful</title>
        <style>
            body {{
                font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
                display: flex;
                align-items: center;
                justify-content: center;
                min-height: 100vh;
                margin: 0;
            }}
            .container {{ text-align: center; }}
        </style>
        <script>
            window.__AUTH_RESULT__ = {result_json};
            window.onload = function() {{
                setTimeout(function() {{
                    window.location.href = {js_target};
                }}, 1000);
            }};
        </script>
    </head>
    <body>
        <div class="container">
            <h1>Login Successful!</h1>
            <p>Welcome, {user_label}</p>
            <p><a href="{target}">Continue</a></p>
        </div>
    </body>
    </html>
    """

    return HTMLResponse(content=html_content, status_code=200)
