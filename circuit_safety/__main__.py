"""Entry point for ``python -m circuit_safety``."""

from circuit_safety.main import main

if __name__ == "__main__":
    raise SystemExit(main())
