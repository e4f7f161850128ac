"""projgen: scaffold multi-component projects from external toolchains or built-in skeletons."""

__version__ = "0.1.0"
