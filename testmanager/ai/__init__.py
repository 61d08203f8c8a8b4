"""
Playwright Test Manager
AI module.

Submodules:
    - gateway: LLM Gateway (provider routing from the settings table)
    - prompts: prompt templates with {{variable}} rendering
    - step_importer: free text / code lines → structured steps
"""
