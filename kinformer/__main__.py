"""
CLI entry point, when used as a module: `python -m kinformer`.

Useful for debugging in the IDEs (use the start-mode "Module", module "kinformer").
"""
from kinformer import cli

if __name__ == '__main__':
    cli.main()
