"""Run the keyserver: HTTP endpoints on the metrics port plus the rotation loop."""
from keyserver.main import run

if __name__ == "__main__":
    run()
