"""
On-page operator notices: the manual-action prompt with its "done" bridge,
and the process-aborted banner.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any, List, Optional

from .browser_utils import save_screenshot

logger = logging.getLogger(__name__)

PROMPT_ID = "topads-manual-prompt"
DONE_ATTRIBUTE = "data-topads-manual-done"
ABORT_BANNER_ID = "topads-process-aborted"

_SHOW_PROMPT_JS = """
(args) => {
  const old = document.getElementById(args.id);
  if (old) old.remove();
  document.documentElement.removeAttribute(args.attr);

  const box = document.createElement('div');
  box.id = args.id;
  Object.assign(box.style, {
    position: 'fixed', top: '10px', left: '10px', padding: '15px',
    backgroundColor: args.color, color: 'white', fontWeight: 'bold',
    fontSize: '16px', zIndex: '2147483647', borderRadius: '5px', maxWidth: '420px'
  });
  for (const line of args.lines) {
    const p = document.createElement('p');
    p.textContent = line;
    box.appendChild(p);
  }
  const button = document.createElement('button');
  button.textContent = args.button;
  Object.assign(button.style, {
    display: 'block', marginTop: '10px', padding: '8px 15px',
    backgroundColor: 'white', color: 'black', border: 'none',
    borderRadius: '3px', cursor: 'pointer'
  });
  button.addEventListener('click', () => {
    document.documentElement.setAttribute(args.attr, args.token);
    button.disabled = true;
    button.textContent = 'Continuing...';
  }, { once: true });
  box.appendChild(button);
  document.body.appendChild(box);
  return true;
}
"""

_READ_DONE_JS = "(attr) => document.documentElement.getAttribute(attr)"

_PROMPT_PRESENT_JS = "(id) => !!document.getElementById(id)"

_DISMISS_JS = """
(args) => {
  const box = document.getElementById(args.id);
  if (box) box.remove();
  document.documentElement.removeAttribute(args.attr);
  return true;
}
"""

_ABORT_BANNER_JS = """
(args) => {
  const div = document.createElement('div');
  div.id = args.id;
  Object.assign(div.style, {
    position: 'fixed', top: '10%', left: '10%', padding: '30px',
    backgroundColor: 'rgba(0, 0, 0, 0.9)', color: 'white', fontWeight: 'bold',
    fontSize: '24px', zIndex: '2147483647', borderRadius: '10px', textAlign: 'center'
  });
  div.textContent = args.text;
  document.body.appendChild(div);
  return true;
}
"""


class PromptBridge:
    """
    Channel between an injected operator prompt and the process.

    The prompt's button writes a per-bridge token into a DOM attribute on
    <html>; `is_done()` polls for it. Once seen the bridge stays resolved.
    """

    def __init__(self, page: Any, token: Optional[str] = None):
        self.page = page
        self.token = token or uuid.uuid4().hex
        self._resolved = False
        self._lines: List[str] = []
        self._button = "Done"
        self._color = "rgba(200, 0, 0, 0.85)"

    @property
    def resolved(self) -> bool:
        return self._resolved

    def show(self, lines: List[str], button_label: str = "Done", color: Optional[str] = None) -> bool:
        self._lines = list(lines)
        self._button = button_label
        if color:
            self._color = color
        return self._inject()

    def _inject(self) -> bool:
        try:
            self.page.evaluate(
                _SHOW_PROMPT_JS,
                {
                    "id": PROMPT_ID,
                    "attr": DONE_ATTRIBUTE,
                    "token": self.token,
                    "lines": self._lines,
                    "button": self._button,
                    "color": self._color,
                },
            )
            return True
        except Exception as exc:
            logger.warning("Could not inject operator prompt: %s", exc)
            return False

    def ensure_visible(self) -> None:
        """Re-inject the prompt if a navigation wiped it."""
        if self._resolved or not self._lines:
            return
        try:
            present = bool(self.page.evaluate(_PROMPT_PRESENT_JS, PROMPT_ID))
        except Exception:
            present = False
        if not present:
            self._inject()

    def is_done(self) -> bool:
        if self._resolved:
            return True
        try:
            value = self.page.evaluate(_READ_DONE_JS, DONE_ATTRIBUTE)
        except Exception:
            return False
        if value == self.token:
            self._resolved = True
        return self._resolved

    def dismiss(self) -> None:
        try:
            self.page.evaluate(_DISMISS_JS, {"id": PROMPT_ID, "attr": DONE_ATTRIBUTE})
        except Exception:
            logger.debug("Prompt dismiss failed", exc_info=True)


def show_process_aborted(page: Any, error: BaseException, screenshots_dir: Path) -> Optional[Path]:
    """Log the abort, leave a banner in the browser and capture the final state."""
    logger.error("Process aborted: %s", error)
    shot = save_screenshot(page, screenshots_dir, "process-aborted")
    if page is not None:
        try:
            page.evaluate(
                _ABORT_BANNER_JS,
                {"id": ABORT_BANNER_ID, "text": "PROCESS ABORTED - Please restart the application"},
            )
        except Exception:
            logger.debug("Abort banner injection failed", exc_info=True)
    return shot
