"""Script generation and packaging for intunepublisher.

This package provides the default implementations of the script generator
and packager collaborators used by the deployment orchestrator.

Public API:

WingetScriptGenerator : class
    Generates winget-based install, uninstall and detection scripts.
IntuneWinPackager : class
    Packages a script directory into .intunewin and reads its manifest.
sanitize_filename : function
    Restrict a name to ``[a-zA-Z0-9._-]``.

Example:
    from pathlib import Path
    from intunepublisher.build import IntuneWinPackager, WingetScriptGenerator

    generator = WingetScriptGenerator()
    packager = IntuneWinPackager(Path("cache/tools"))
"""

from .packager import IntuneWinPackager, read_intunewin
from .scripts import (
    WingetScriptGenerator,
    sanitize_filename,
    script_filename,
    write_script,
)

__all__ = [
    "IntuneWinPackager",
    "WingetScriptGenerator",
    "read_intunewin",
    "sanitize_filename",
    "script_filename",
    "write_script",
]
