"""Entry point for the hours reconciliation service."""

import os

from web_app import create_app


def main():
    """Launch the reconciliation API on HOURS_RECON_HOST:HOURS_RECON_PORT."""
    app = create_app()
    app.run(
        host=os.environ.get("HOURS_RECON_HOST", "127.0.0.1"),
        port=int(os.environ.get("HOURS_RECON_PORT", "5000")),
        debug=os.environ.get("HOURS_RECON_DEBUG", "").lower() in ("1", "true", "yes"),
    )


if __name__ == "__main__":
    main()
