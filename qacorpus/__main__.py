"""
Module entry point for: python -m qacorpus

Allows running the tool directly as a module:
    python -m qacorpus build <input_dir> <output_dir> [options]
    python -m qacorpus validate <input_dir> [options]
    python -m qacorpus show <markdown_file>
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
