"""
Built-in Tools

Importing a module registers its tools under its plugin (category).
"""

from tools.builtin import rag
from tools.builtin import web
from tools.builtin import weather
from tools.builtin import email
from tools.builtin import documents
from tools.builtin import chat
