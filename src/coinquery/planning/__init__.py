"""Intent compilation: from a question to a data-fetch program."""
