#!/usr/bin/env python3
"""
Main entry point for the HubPanel server
"""

from hubpanel.server import run

if __name__ == "__main__":
    run()
