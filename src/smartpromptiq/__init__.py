"""SmartPromptIQ backend: prompt generation, Academy and token billing."""

__version__ = "0.1.0"
