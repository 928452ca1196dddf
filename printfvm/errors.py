"""
Base exception for the printf VM toolchain.

Each stage defines its own error classes next to the code that raises
them (decoder.py, state.py, executor.py, render.py, config.py); they all
derive from PrintfVMError so a driver can catch the whole family at once.
"""


class PrintfVMError(Exception):
    """Root of every error raised by printfvm."""
    def __init__(self, message: str, offset: int = None):
        self.message = message
        self.offset = offset
        super().__init__(f"Offset {offset:#x}: {message}" if offset is not None else message)
