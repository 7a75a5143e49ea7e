#!/usr/bin/env python3

from nodemap.main import run

if __name__ == "__main__":
    run()
