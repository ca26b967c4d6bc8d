import os
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def test_project_boots_in_a_fresh_interpreter():
    # App loading must not depend on which module happens to be imported first
    env = dict(os.environ, DJANGO_SETTINGS_MODULE='hms.settings')
    code = 'import django; django.setup(); import hms.urls, hms.asgi, rest_framework.views'
    result = subprocess.run([sys.executable, '-c', code], cwd=ROOT, env=env,
                            capture_output=True, text=True, timeout=120)
    assert result.returncode == 0, result.stderr
