# FastAPI application entry point that wires the session registry,
# login orchestrator and credential stores, and registers the API routes.

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse

from luxsession.core.config import Settings, settings
from luxsession.core.errors import ServiceError
from luxsession.routes.session import router as session_router
from luxsession.services.credentials import CodeStore, CredentialStore
from luxsession.services.limiter import RateLimiter
from luxsession.services.link_client import ClientFactory, load_client_factory
from luxsession.services.orchestrator import LoginOrchestrator
from luxsession.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)


def create_app(config: Settings = settings, client_factory: ClientFactory | None = None) -> FastAPI:
    logging.basicConfig(level=config.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        factory = client_factory
        if factory is None:
            if not config.LINK_CLIENT_FACTORY:
                raise RuntimeError("LINK_CLIENT_FACTORY is not set (expected 'module:callable')")
            factory = load_client_factory(config.LINK_CLIENT_FACTORY)

        credential_store = CredentialStore(prefix=config.TOKEN_PREFIX, urlsafe=config.TOKEN_URLSAFE)
        app.state.code_store = CodeStore(config.CODES_DIR, prefix=config.TOKEN_PREFIX)
        app.state.registry = SessionRegistry()
        app.state.limiter = RateLimiter(
            config.MAX_REQUESTS_PER_MINUTE, enabled=config.RATE_LIMIT_ENABLED
        )
        app.state.orchestrator = LoginOrchestrator(
            registry=app.state.registry,
            client_factory=factory,
            credential_store=credential_store,
            code_store=app.state.code_store,
            sessions_dir=config.SESSIONS_DIR,
            timeout=config.SESSION_TIMEOUT_SECONDS,
            pair_code_separator=config.PAIR_CODE_SEPARATOR,
        )
        logger.info(f"Session server ready: sessions_dir={config.SESSIONS_DIR}, codes_dir={config.CODES_DIR}")
        yield
        await app.state.orchestrator.shutdown()
        logger.info(f"Session server stopped: sessions={len(app.state.registry)}")

    app = FastAPI(title=config.APP_NAME, lifespan=lifespan)
    app.include_router(session_router)

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.url.path} failed: {exc.to_dict()}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "details": str(exc) or type(exc).__name__},
        )

    @app.get("/health")
    async def health(request: Request):
        return {"ok": True, "sessions": len(request.app.state.registry)}

    @app.get("/", response_class=HTMLResponse)
    async def index():
        return HTMLResponse(content=_index_html(config))

    return app


def _index_html(config: Settings) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="UTF-8" />
        <title>{config.APP_NAME}</title>
        <style>
            body {{
                font-family: system-ui, sans-serif;
                display: flex;
                justify-content: center;
                align-items: center;
                min-height: 100vh;
                margin: 0;
                background: #020617;
                color: #e5e7eb;
            }}
            .card {{
                border: 1px solid #1f2937;
                border-radius: 14px;
                padding: 1.5rem 2rem;
                max-width: 620px;
                width: 100%;
                display: grid;
                grid-template-columns: 1.4fr 1fr;
                gap: 1rem;
            }}
            input {{
                width: 100%;
                padding: 0.5rem;
                border-radius: 8px;
                border: 1px solid #334155;
                background: #020617;
                color: #e5e7eb;
            }}
            button {{
                margin-top: 0.6rem;
                padding: 0.5rem 0.8rem;
                border-radius: 8px;
                border: none;
                cursor: pointer;
            }}
            #status {{ margin-top: 0.8rem; font-size: 0.8rem; white-space: pre-wrap; }}
            .ok {{ color: #4ade80; }}
            .err {{ color: #f97373; }}
            #session {{
                display: none;
                margin-top: 0.6rem;
                font-family: monospace;
                font-size: 0.75rem;
                word-break: break-all;
                max-height: 180px;
                overflow: auto;
            }}
            #pairCode {{ font-size: 1.6rem; letter-spacing: 0.2rem; }}
        </style>
    </head>
    <body>
        <div class="card">
            <div>
                <h1>{config.APP_NAME}</h1>
                <p>Link a WhatsApp device and receive a session string.</p>
                <button id="btnQr">Start QR Session</button>
                <p><label for="phone">Phone number (with country code, no +)</label></p>
                <input id="phone" type="text" placeholder="e.g. 918888888888" />
                <button id="btnPair">Get Pair Code</button>
                <div id="status"></div>
                <div id="session"></div>
            </div>
            <div>
                <img id="qrImg" width="220" height="220" alt="QR will appear here" />
                <div id="pairCode"></div>
            </div>
        </div>
        <script>
            const pollInterval = {config.POLL_INTERVAL_MS};
            let pollTimer = null;

            function setStatus(text, cls) {{
                const el = document.getElementById('status');
                el.textContent = text;
                el.className = cls || '';
            }}

            function showSession(token, code) {{
                const el = document.getElementById('session');
                el.style.display = 'block';
                el.textContent = 'SESSION=' + token + '\\n\\nShort code: ' + code;
            }}

            function startPolling(sessionId) {{
                clearInterval(pollTimer);
                pollTimer = setInterval(async () => {{
                    try {{
                        const res = await fetch(`/api/session/status/${{sessionId}}`);
                        const data = await res.json();
                        if (data.qr) {{
                            document.getElementById('qrImg').src = data.qr;
                        }}
                        if (data.ready) {{
                            clearInterval(pollTimer);
                            const result = await (await fetch(`/api/session/result/${{sessionId}}`)).json();
                            setStatus('Session generated successfully!', 'ok');
                            showSession(result.session, result.code);
                        }} else if (data.status === 'closed_error' || data.status === 'timed_out') {{
                            clearInterval(pollTimer);
                            setStatus('Error: ' + (data.error || 'login failed'), 'err');
                        }}
                    }} catch (error) {{
                        clearInterval(pollTimer);
                        setStatus('Polling failed: ' + error, 'err');
                    }}
                }}, pollInterval);
            }}

            async function start(url) {{
                const res = await fetch(url);
                const data = await res.json();
                if (!res.ok) {{
                    setStatus('Error: ' + (data.message || data.details || data.error), 'err');
                    return null;
                }}
                return data;
            }}

            document.getElementById('btnQr').addEventListener('click', async () => {{
                setStatus('Starting QR session...');
                const data = await start('/api/session/qr');
                if (!data) return;
                if (data.qr) document.getElementById('qrImg').src = data.qr;
                setStatus('Scan the QR from WhatsApp -> Linked Devices.');
                startPolling(data.sessionId);
            }});

            document.getElementById('btnPair').addEventListener('click', async () => {{
                const phone = document.getElementById('phone').value.trim();
                setStatus('Requesting pair code...');
                const data = await start('/api/session/pair?phone=' + encodeURIComponent(phone));
                if (!data) return;
                document.getElementById('pairCode').textContent = data.code || '';
                setStatus('On your phone: Linked devices -> Link with phone number -> enter the code.');
                startPolling(data.sessionId);
            }});
        </script>
    </body>
    </html>
    """


app = create_app()
