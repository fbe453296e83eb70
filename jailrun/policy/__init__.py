"""Policy compilers: restriction options to enforcement artifacts.

- ``profiles``: profile text for sandbox-exec and firejail
- ``container``: engine CLI flag sequences
- ``landlock``: negotiated Landlock rulesets and their application
"""
