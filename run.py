import socket
import sys
import uvicorn

from luxsession.core.config import settings


def get_lan_ip():
    try:
        # Connect to a public DNS server to determine the route
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "127.0.0.1"


def main():
    if not settings.LINK_CLIENT_FACTORY:
        print("LINK_CLIENT_FACTORY is not set. Point it at 'module:callable' returning a link client.")
        sys.exit(1)

    port = settings.PORT
    url = f"http://{get_lan_ip()}:{port}"
    print("\n" + "=" * 60)
    print("SESSION SERVER STARTING")
    print(f"LAN URL:    {url}")
    print(f"Local:      http://127.0.0.1:{port}")
    print("-" * 60)
    print(f"UI:         {url}/")
    print(f"QR start:   GET {url}/api/session/qr")
    print(f"Pair code:  GET {url}/api/session/pair?phone=918888888888")
    print(f"Result:     GET {url}/api/session/result/<sessionId>")
    print("=" * 60 + "\n")

    uvicorn.run(
        "luxsession.main:app",
        host=settings.HOST,
        port=port,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
