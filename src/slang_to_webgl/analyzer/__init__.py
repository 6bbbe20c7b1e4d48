"""Analysis passes: lexing, pragmas, bindings, preamble globals and stages."""
