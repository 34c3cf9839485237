"""Command-line options, usage text and YAML configuration."""