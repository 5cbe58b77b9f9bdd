"""dojoqr CLI: render, verify and rotate branded check-in QR codes."""

import argparse
import asyncio
import sys

from PIL import Image

from dojoqr.logging import audit, get_logger, setup_logging

log = get_logger("cli")

DEFAULT_STORE = "checkin_tokens.json"


async def _resolve_token(args) -> str:
    if args.token:
        return args.token
    from dojoqr.tokens import JsonTokenStore

    return await JsonTokenStore(args.store).get(args.location)


def cmd_render(args):
    """Render a circular check-in QR and export it."""
    from dojoqr.circular import CircularRenderer, Geometry
    from dojoqr.exporter import export_raster
    from dojoqr.generator import PayloadTooLargeError
    from dojoqr.identity import CheckinIdentity
    from dojoqr.tokens import UnknownLocationError

    async def run():
        identity = CheckinIdentity(
            location_id=args.location,
            checkin_token=await _resolve_token(args),
            display_name=args.name,
            logo_resource=args.logo,
            primary_color=args.primary,
            accent_color=args.accent,
        )
        renderer = CircularRenderer(args.origin, geometry=Geometry(size=args.size))
        return await renderer.render(identity)

    try:
        pass_ = asyncio.run(run())
    except (PayloadTooLargeError, UnknownLocationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    path = export_raster(pass_.surface, args.name, directory=args.output_dir, fmt=args.format)
    plan = pass_.plan
    print(f"Rendered: {path} ({pass_.surface.size[0]}x{pass_.surface.size[1]})")
    print(f"  Version: {pass_.matrix.version}, ECC: {pass_.matrix.ecc}, "
          f"Modules: {plan.module_count}x{plan.module_count}")
    print(f"  Dots: {len(plan.dots)}, dropped {plan.dropped}/{plan.total_dark} dark modules "
          f"({plan.drop_fraction:.1%}), damaged cells {plan.damaged_fraction:.1%}")
    print(f"  Logo: {pass_.logo_source}" + (f" (glyph '{pass_.glyph}')" if pass_.logo_source == "fallback" else ""))

    if args.verify:
        from dojoqr.verify import verify

        results = verify(pass_.surface, expected_data=pass_.payload)
        for r in results:
            tag = "PASS" if r.success else "FAIL"
            print(f"    [{r.decoder:12s}] {tag} | {r.variant:9s} | {r.decode_time_ms:.1f}ms")
        if not any(r.success for r in results):
            sys.exit(1)


def cmd_verify(args):
    """Verify a rendered QR image."""
    from dojoqr.verify import verify

    img = Image.open(args.image)
    results = verify(img, expected_data=args.expected)

    any_pass = False
    for r in results:
        status = "PASS" if r.success else "FAIL"
        any_pass = any_pass or r.success
        print(f"  [{r.decoder:12s}] {status} | {r.variant:9s} | {r.decode_time_ms:6.1f}ms | "
              f"{r.decoded_data or r.error}")

    sys.exit(0 if any_pass else 1)


def cmd_stress(args):
    """Run stress tests on a rendered QR image."""
    from dojoqr.verify import stress_test

    img = Image.open(args.image)
    result = stress_test(img, expected_data=args.expected, decoder=args.decoder)
    print(result.summary())
    sys.exit(0 if result.pass_rate >= 0.8 else 1)


def cmd_register(args):
    """Seed a location with its initial check-in token."""
    from dojoqr.tokens import JsonTokenStore

    try:
        asyncio.run(JsonTokenStore(args.store).create_location(args.location))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Registered location {args.location} in {args.store}")


def cmd_rotate(args):
    """Rotate a location's check-in token."""
    from dojoqr.generator import build_checkin_url
    from dojoqr.tokens import JsonTokenStore, TokenLifecycle, TokenPersistenceError, UnknownLocationError

    lifecycle = TokenLifecycle(JsonTokenStore(args.store))
    try:
        token = asyncio.run(lifecycle.regenerate(args.location))
    except (UnknownLocationError, TokenPersistenceError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Token rotated for {args.location}; the previous code no longer checks in.")
    if args.show:
        print(f"  Check-in URL: {build_checkin_url(args.origin, token)}")


def main():
    parser = argparse.ArgumentParser(prog="dojoqr", description="Branded circular check-in QR codes")

    # Global logging flags
    parser.add_argument("-V", "--verbose", action="store_true", help="Enable DEBUG-level logging")
    parser.add_argument("--log-file", default=None, help="Write JSON logs to file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- render ---
    p_render = subparsers.add_parser("render", help="Render a circular check-in QR code")
    p_render.add_argument("location", help="Location id")
    p_render.add_argument("--name", required=True, help="Display name (fallback glyph and filename)")
    p_render.add_argument("--token", default=None, help="Check-in token (read from --store if omitted)")
    p_render.add_argument("--store", default=DEFAULT_STORE, help="JSON token store path")
    p_render.add_argument("--origin", default="http://localhost:5173", help="App origin for the check-in URL")
    p_render.add_argument("--primary", default=None, help="Primary colour (hex or 'H S%% L%%')")
    p_render.add_argument("--accent", default=None, help="Accent colour (derived if omitted)")
    p_render.add_argument("--logo", default=None, help="Logo URL or path")
    p_render.add_argument("--size", type=int, default=600, help="Surface side in pixels")
    p_render.add_argument("-o", "--output-dir", default="output", help="Output directory")
    p_render.add_argument("--format", default="PNG", choices=["PNG", "JPEG", "WEBP"], help="Raster format")
    p_render.add_argument("--verify", action="store_true", help="Decode the result with real decoders")

    # --- verify ---
    p_ver = subparsers.add_parser("verify", help="Verify a QR code image")
    p_ver.add_argument("image", help="Path to QR code image")
    p_ver.add_argument("--expected", default=None, help="Expected decoded data (fails if mismatch)")

    # --- stress ---
    p_stress = subparsers.add_parser("stress", help="Run stress tests on a QR code image")
    p_stress.add_argument("image", help="Path to QR code image")
    p_stress.add_argument("--expected", default=None, help="Expected decoded data")
    p_stress.add_argument("--decoder", default="pyzbar", choices=["pyzbar", "opencv"], help="Decoder to use")

    # --- register ---
    p_reg = subparsers.add_parser("register", help="Create a location's first token")
    p_reg.add_argument("location", help="Location id")
    p_reg.add_argument("--store", default=DEFAULT_STORE, help="JSON token store path")

    # --- rotate ---
    p_rot = subparsers.add_parser("rotate", help="Regenerate a location's check-in token")
    p_rot.add_argument("location", help="Location id")
    p_rot.add_argument("--store", default=DEFAULT_STORE, help="JSON token store path")
    p_rot.add_argument("--origin", default="http://localhost:5173", help="App origin for the check-in URL")
    p_rot.add_argument("--show", action="store_true", help="Print the new check-in URL")

    args = parser.parse_args()

    # Setup logging before any command runs
    level = "DEBUG" if args.verbose else "INFO"
    setup_logging(level=level, log_file=args.log_file)
    audit("cli.start", logger=log, command=args.command, verbose=args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "render": cmd_render,
        "verify": cmd_verify,
        "stress": cmd_stress,
        "register": cmd_register,
        "rotate": cmd_rotate,
    }
    commands[args.command](args)
    audit("cli.done", logger=log, command=args.command)


if __name__ == "__main__":
    main()
