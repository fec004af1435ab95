import logging

from aiohttp import web

from state import BotState

logger = logging.getLogger(__name__)

STATE_KEY = web.AppKey("state", BotState)

QR_NOT_AVAILABLE = "QR code not available yet. Please try again later."

STATUS_PAGE = """
<html>
<head>
    <title>WhatsApp Bot Status</title>
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <style>
        body {{ font-family: Arial, sans-serif; margin: 40px; line-height: 1.6; }}
        .container {{ max-width: 800px; margin: 0 auto; }}
        h1 {{ color: #4CAF50; }}
        .status {{ padding: 15px; background-color: #f5f5f5; border-radius: 5px; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>WhatsApp Bot Status</h1>
        <div class="status">
            <p>{status}</p>
            <p>{qr_status}</p>
        </div>
    </div>
</body>
</html>
"""

QR_PAGE = """
<html>
<head>
    <title>WhatsApp QR Code</title>
    <meta name="viewport" content="width=device-width, initial-scale=1">
</head>
<body style="display: flex; justify-content: center; align-items: center; height: 100vh; flex-direction: column;">
    <h1>Scan this QR code with WhatsApp</h1>
    <img src="data:image/png;base64,{image}" alt="WhatsApp QR Code" />
    <p style="margin-top: 20px;">Scan this QR code with your WhatsApp app to log in</p>
</body>
</html>
"""

NO_STORE = {"Cache-Control": "no-store"}


async def health(request: web.Request) -> web.Response:
    return web.Response(text="OK")


async def index(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    qr_status = ""
    if state.pairing.available:
        qr_status = "QR code is available at <a href='/qr'>/qr</a> endpoint."
    body = STATUS_PAGE.format(status=state.status_text(), qr_status=qr_status)
    return web.Response(text=body, content_type="text/html", headers=NO_STORE)


async def qr_page(request: web.Request) -> web.Response:
    artifact = request.app[STATE_KEY].pairing.latest()
    if artifact is None:
        return web.Response(status=404, text=QR_NOT_AVAILABLE)
    body = QR_PAGE.format(image=artifact.as_base64())
    return web.Response(text=body, content_type="text/html", headers=NO_STORE)


async def qr_png(request: web.Request) -> web.Response:
    artifact = request.app[STATE_KEY].pairing.latest()
    if artifact is None:
        return web.Response(status=404, text=QR_NOT_AVAILABLE)
    return web.Response(body=artifact.png, content_type="image/png", headers=NO_STORE)


def create_app(state: BotState) -> web.Application:
    app = web.Application()
    app[STATE_KEY] = state
    app.add_routes([
        web.get("/health", health),
        web.get("/", index),
        web.get("/qr", qr_page),
        web.get("/qr.png", qr_png),
    ])
    return app


async def start_status_server(state: BotState, host: str = "0.0.0.0", port: int = 8000) -> web.AppRunner:
    """Занимает порт и отмечает HTTP-сервер готовым.

    Возвращается сразу после bind, дальше сервер работает в текущем цикле
    событий. Ошибки bind (OSError) пробрасываются наружу.
    """
    runner = web.AppRunner(create_app(state), access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    logger.info(f"Запуск HTTP-сервера на порту {port}")
    try:
        await site.start()
    except OSError:
        await runner.cleanup()
        raise
    state.mark_server_ready()
    return runner
