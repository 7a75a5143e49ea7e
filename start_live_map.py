#!/usr/bin/env python3

import sys

if __name__ == "__main__":
    print("=" * 60)
    print("Starting Bitcoin Node Map Server")
    print("=" * 60)
    print("This will:")
    print("  1. Start HTTP server (default: http://localhost:8000)")
    print("  2. Open the map in your browser")
    print("\nNote: The map displays frontend/dashboard.json")
    print("To update the data, run:")
    print("  python main.py")
    print("  or keep it fresh with")
    print("  nodemap-refresh")
    print("\nPress Ctrl+C to stop")
    print("=" * 60)

    try:
        from nodemap.serve import main as serve_main
        serve_main()
    except KeyboardInterrupt:
        print("\n\nStopping server...")
        sys.exit(0)
