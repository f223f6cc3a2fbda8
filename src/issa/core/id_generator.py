"""
Generador centralizado de IDs para ISSA.

Los errores y los spans de tracing usan identificadores hex32.
Las entradas de conocimiento usan enteros asignados por SQLite.
"""

import secrets

def generate_id() -> str:
    """
    Genera un ID hex32 (32 caracteres hexadecimales).

    Examples:
        >>> generate_id()
        'a3f4b2c1d5e6f7a8b9c0d1e2f3a4b5c6'
    """
    return secrets.token_hex(16)
