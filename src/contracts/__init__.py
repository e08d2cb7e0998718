"""Contracts package.

This package defines *public* wire contracts: registry opcodes and field widths,
stream names, envelope fields and v1 payload semantics. Services may only share
types via `src.core` and `src.contracts`.
"""
