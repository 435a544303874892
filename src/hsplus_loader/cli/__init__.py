"""
hsplus-loader Command-Line Interface
====================================

- **hsload**: upload stage-1 and stage-2 firmware to an uninitialized
  GPIB-USB-HS+ adapter

The tool is a Click application; exit codes are defined in
``hsplus_loader.cli.errors``.
"""

__all__ = ["hsload"]
