from pathlib import Path
from typing import Dict


class PromptManager:
    def __init__(self):
        # Packaged prompts first, then an override directory next to the working dir
        self.search_paths = [
            Path(__file__).parent.parent / "prompts",   # civiclens/prompts
            Path.cwd() / "prompts"                      # project_root/prompts (optional)
        ]
        self._cache: Dict[str, str] = {}

    def load_prompt(self, name: str) -> str:
        if name in self._cache:
            return self._cache[name]

        filename = f"{name}.txt"

        for base in self.search_paths:
            file_path = base / filename
            if file_path.exists():
                self._cache[name] = file_path.read_text(encoding="utf-8")
                return self._cache[name]

        raise FileNotFoundError(
            f"Prompt file '{filename}' not found in paths: "
            f"{[str(p) for p in self.search_paths]}"
        )

    def render(self, name: str, **values: str) -> str:
        return self.load_prompt(name).format(**values)
