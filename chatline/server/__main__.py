"""
Server entry point: delegates to chatline.server.server module.

Run with:
    python -m chatline.server
"""

from chatline.server.server import main

if __name__ == "__main__":
    main()
