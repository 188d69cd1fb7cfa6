"""DarkVault Meta information.
   DarkVault keeps per-owner encrypted vaults: one FHE-encrypted key
   and an append-only list of client-side ciphertexts.
"""
__title__ = 'darkvault'
__description__ = (
   'Per-owner encrypted vault ledger with FHE-protected keys '
   'and append-only ciphertext storage.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2025 DarkVault Contributors'
__author__ = 'DarkVault Contributors'
__author_email__ = 'dev@darkvault.dev'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/darkvault/darkvault'
