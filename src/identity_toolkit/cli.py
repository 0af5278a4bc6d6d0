from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from cryptography import x509
from jwt import exceptions as jwt_exceptions

from .certs import Certificates
from .client import Client
from .config import load_config
from .core import format_token_error, verify_token
from .errors import CertificateError
from .samples import generate_sample
from .version import __version__
from .web import serve


def _print_json(obj: object) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _load_token(token_arg: str) -> str:
    if token_arg != "-":
        return token_arg
    token = sys.stdin.read().strip()
    if not token:
        raise ValueError("stdin is empty; expected JWT")
    return token


def _parse_list(values: list[str] | None) -> list[str]:
    items: list[str] = []
    for raw in values or []:
        items.extend(part.strip() for part in str(raw).split(",") if part.strip())
    return list(dict.fromkeys(items))


def _certs_from_file(path: str) -> Certificates:
    obj = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(obj, dict):
        raise ValueError("certificates file must be a JSON object of kid -> PEM")
    certs = {
        str(kid): x509.load_pem_x509_certificate(str(pem).encode("utf-8"))
        for kid, pem in obj.items()
    }
    return Certificates(None, certs=certs)


def _cmd_verify(args: argparse.Namespace) -> int:
    if bool(args.certs_url) == bool(args.certs_file):
        raise ValueError("provide exactly one of --certs-url or --certs-file")
    audiences = _parse_list(args.aud)
    if not audiences:
        raise ValueError("at least one --aud is required")
    if args.at is not None and int(args.at) < 0:
        raise ValueError("--at must be a non-negative integer")
    token = _load_token(args.token)

    if args.certs_url:
        certs = Certificates.load(args.certs_url)
    else:
        certs = _certs_from_file(args.certs_file)
    try:
        verified = verify_token(token, audiences, _parse_list(args.iss), certs, now=args.at)
    except jwt_exceptions.PyJWTError as exc:
        raise ValueError(format_token_error(exc, include_cause=True)) from exc
    finally:
        certs.close()
    _print_json({"valid": True, "token": verified.as_dict()})
    return 0


def _cmd_certs(args: argparse.Namespace) -> int:
    with Certificates.load(args.url) as certs:
        output: dict[str, Any] = {
            "url": args.url,
            "keys": certs.key_ids,
            "refresh_interval": certs.refresh_interval,
        }
    _print_json(output)
    return 0


def _cmd_sample(args: argparse.Namespace) -> int:
    if args.exp_seconds <= 0:
        raise ValueError("--exp-seconds must be positive")
    sample = generate_sample(exp_seconds=args.exp_seconds, kid=args.kid)
    if not args.include_private_key:
        sample.pop("private_key_pem")
    _print_json(sample)
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    client = Client(load_config(args.config))
    serve(client, host=args.host, port=args.port)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="identity-toolkit")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_verify = sub.add_parser("verify", help="Verify an ID token against provider certificates")
    p_verify.add_argument("--token", required=True, help="JWT string (use '-' to read from stdin)")
    p_verify.add_argument(
        "--aud",
        action="append",
        help="Accepted audience (repeatable or comma-separated; at least one required)",
    )
    p_verify.add_argument(
        "--iss",
        action="append",
        help="Accepted issuer (repeatable or comma-separated; omit to skip the issuer check)",
    )
    p_verify.add_argument("--certs-url", help="Certificates endpoint returning {kid: PEM}")
    p_verify.add_argument("--certs-file", help="Path to a JSON file of {kid: PEM}")
    p_verify.add_argument(
        "--at",
        type=int,
        help="Evaluate expiry at this unix timestamp instead of now",
    )
    p_verify.set_defaults(func=_cmd_verify)

    p_certs = sub.add_parser("certs", help="Fetch provider certificates and list key ids")
    p_certs.add_argument("--url", required=True, help="Certificates endpoint URL")
    p_certs.set_defaults(func=_cmd_certs)

    p_sample = sub.add_parser("sample", help="Generate an offline demo token and certificate")
    p_sample.add_argument("--exp-seconds", type=int, default=3600, help="Token lifetime")
    p_sample.add_argument("--kid", default="demo-kid", help="Key id for the demo certificate")
    p_sample.add_argument(
        "--include-private-key",
        action="store_true",
        help="Also print the signing key (demo use only)",
    )
    p_sample.set_defaults(func=_cmd_sample)

    p_serve = sub.add_parser("serve", help="Serve /api/whoami for the session cookie")
    p_serve.add_argument("--config", required=True, help="Path to the JSON client config")
    p_serve.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    p_serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    p_serve.set_defaults(func=_cmd_serve)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except KeyboardInterrupt:
        return 130
    except (ValueError, CertificateError, jwt_exceptions.PyJWTError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
