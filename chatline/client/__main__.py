"""
Client entry point: delegates to chatline.client.client module.

Run with:
    python -m chatline.client
"""

from chatline.client.client import main

if __name__ == "__main__":
    main()
