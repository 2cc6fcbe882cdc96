# mtls_broker/admin/cli.py

import argparse
import asyncio
import logging
import threading

from broker.certgen import describe_certificate
from broker.credentials import CredentialStore
from broker.errors import BrokerError
from broker.server import BrokerConfig, ConnectionBroker
import config.settings as settings


async def generate_credentials(store, key_path, cert_path):
    store.adopt(await store.generate())
    paths = await store.persist(key_path, cert_path)
    print(f"✅ Key written to {paths['key_path']!r}, certificate to {paths['cert_path']!r}.")
    return paths

async def show_credentials(store, key_path, cert_path):
    await store.load(key_path, cert_path)
    info = describe_certificate(store.certificate)
    for name, value in info.items():
        print(f"{name:<11} {value}")
    return info

async def release_credentials(store, key_path, cert_path):
    await store.load(key_path, cert_path)
    await store.release()
    print(f"✅ Removed {key_path!r} and {cert_path!r}.")

def start_status_app(broker, host, port):
    """Run the HTTP status app next to the broker, in a daemon thread."""
    from admin.web import create_app
    app = create_app(broker)
    thr = threading.Thread(
        target=lambda: app.run(host=host, port=port, use_reloader=False),
        daemon=True
    )
    thr.start()
    logging.info(f"Status app on http://{host}:{port}/health")
    return thr

async def serve(args):
    config = BrokerConfig(
        host=args.host,
        trusted_authority_paths=args.ca or list(settings.CA_PATHS),
        key_path=args.key,
        cert_path=args.cert,
        min_port=args.min_port,
        max_port=args.max_port,
    )
    broker = ConnectionBroker()
    if args.http_port:
        start_status_app(broker, args.host, args.http_port)
    await broker.run(config)

def main(argv=None):
    parser = argparse.ArgumentParser(prog="admin", description="Broker Admin CLI")
    sub = parser.add_subparsers(dest="cmd", required=True)

    # generate-credentials
    gc = sub.add_parser("generate-credentials", help="Create and save a self-signed key/certificate")
    gc.add_argument("--key",  default=settings.KEY_PATH)
    gc.add_argument("--cert", default=settings.CERT_PATH)

    # show-credentials
    sc = sub.add_parser("show-credentials", help="Print subject, issuer and validity of a certificate")
    sc.add_argument("--key",  default=settings.KEY_PATH)
    sc.add_argument("--cert", default=settings.CERT_PATH)

    # release-credentials
    rc = sub.add_parser("release-credentials", help="Delete a saved key/certificate")
    rc.add_argument("--key",  default=settings.KEY_PATH)
    rc.add_argument("--cert", default=settings.CERT_PATH)

    # serve
    sv = sub.add_parser("serve", help="Run the broker until interrupted")
    sv.add_argument("--host", default=settings.HOST)
    sv.add_argument("--key",  default=settings.KEY_PATH)
    sv.add_argument("--cert", default=settings.CERT_PATH)
    sv.add_argument("--ca", action="append",
                    help="trusted client authority (PEM), repeatable")
    sv.add_argument("--min-port", type=int, default=settings.MIN_PORT)
    sv.add_argument("--max-port", type=int, default=settings.MAX_PORT)
    sv.add_argument("--http-port", type=int, default=None,
                    help="also serve /health and /clients over plain HTTP")

    args = parser.parse_args(argv)
    logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)

    store = CredentialStore()
    try:
        if args.cmd == "generate-credentials":
            asyncio.run(generate_credentials(store, args.key, args.cert))
        elif args.cmd == "show-credentials":
            asyncio.run(show_credentials(store, args.key, args.cert))
        elif args.cmd == "release-credentials":
            asyncio.run(release_credentials(store, args.key, args.cert))
        elif args.cmd == "serve":
            asyncio.run(serve(args))
    except BrokerError as exc:
        print(f"❌ {exc}")
        return 1
    except KeyboardInterrupt:
        logging.info("🛑 Broker shutting down")
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
