"""Inspect ELF images and plan how a minimal loader maps, relocates and links them."""

__version__ = "0.1.0"

__all__ = ["elf", "formatting", "linker", "loader_lib", "memory_map", "winruntime"]