"""
Project context - Cheap, read-only facts about a project directory.

Used to prefix agent prompts. Nothing here runs a subprocess or walks
the tree deeply; a missing or unreadable file just means less context.
"""

import json
import logging
import os
import re
import tomllib
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DOC_FILES = ("CLAUDE.md", "AGENTS.md", "README.md")
REPO_CONTEXT_CHARS = 1500
LISTING_LIMIT = 40
IGNORED_ENTRIES = {"node_modules", "__pycache__", "venv", ".venv", "dist", "build"}

STRUCTURE_BLOCK = re.compile(r"```[\s\S]*?Structure:[\s\S]*?```")


def _read_text(path: Path) -> Optional[str]:
	try:
		return path.read_text(encoding="utf-8")
	except (OSError, UnicodeDecodeError) as e:
		logger.debug(f"Could not read {path}: {e}")
		return None


def load_repo_context(project_path: str) -> str:
	"""
	Short repository description for agent prompts.

	Prefers a fenced block containing "Structure:" from CLAUDE.md, then the
	head of CLAUDE.md, then just the project path.
	"""
	context = f"Project at: {project_path}"
	content = _read_text(Path(project_path) / "CLAUDE.md")
	if content:
		match = STRUCTURE_BLOCK.search(content)
		context = match.group(0) if match else content[:REPO_CONTEXT_CHARS]
	return context


def find_mcp_config(project_path: str) -> Optional[str]:
	"""Locate an MCP config for the agent: project .mcp.json, then ~/.claude.json."""
	project_mcp = Path(project_path) / ".mcp.json"
	if project_mcp.exists():
		return str(project_mcp)

	home_mcp = Path.home() / ".claude.json"
	if home_mcp.exists():
		return str(home_mcp)

	return None


def summarize_manifest(project_path: str) -> Optional[str]:
	"""One-line summary of the project's package manifest, if any."""
	root = Path(project_path)

	pyproject = root / "pyproject.toml"
	if pyproject.exists():
		try:
			with open(pyproject, "rb") as f:
				data = tomllib.load(f)
		except (OSError, tomllib.TOMLDecodeError) as e:
			logger.debug(f"Unreadable pyproject.toml: {e}")
		else:
			project = data.get("project", {})
			deps = project.get("dependencies", [])
			return (
				f"pyproject.toml: {project.get('name', root.name)} {project.get('version', '')}".rstrip()
				+ (f" deps: {', '.join(deps[:15])}" if deps else "")
			)

	package_json = root / "package.json"
	if package_json.exists():
		raw = _read_text(package_json)
		try:
			data = json.loads(raw) if raw else {}
		except json.JSONDecodeError:
			data = {}
		deps = list(data.get("dependencies", {}).keys())
		scripts = list(data.get("scripts", {}).keys())
		parts = [f"package.json: {data.get('name', root.name)} {data.get('version', '')}".rstrip()]
		if deps:
			parts.append(f"deps: {', '.join(deps[:15])}")
		if scripts:
			parts.append(f"scripts: {', '.join(scripts[:10])}")
		return " ".join(parts)

	for name in ("Cargo.toml", "go.mod", "requirements.txt", "setup.py"):
		if (root / name).exists():
			return f"{name} present"

	return None


def list_directory(project_path: str, limit: int = LISTING_LIMIT) -> list[str]:
	"""Top-level entries of the project, directories suffixed with '/'."""
	try:
		with os.scandir(project_path) as it:
			entries = sorted(it, key=lambda e: (not e.is_dir(), e.name))
	except OSError as e:
		logger.debug(f"Cannot list {project_path}: {e}")
		return []

	names = []
	for entry in entries:
		if entry.name.startswith(".") or entry.name in IGNORED_ENTRIES:
			continue
		names.append(entry.name + "/" if entry.is_dir() else entry.name)
		if len(names) >= limit:
			break
	return names


def gather_project_context(project_path: str) -> str:
	"""Documentation head, manifest summary and shallow listing, as prompt text."""
	root = Path(project_path)
	sections = [f"Project at: {project_path}"]

	for name in DOC_FILES:
		content = _read_text(root / name)
		if content:
			sections.append(f"{name}:\n{content[:REPO_CONTEXT_CHARS]}")
			break

	manifest = summarize_manifest(project_path)
	if manifest:
		sections.append(manifest)

	listing = list_directory(project_path)
	if listing:
		sections.append("Top-level entries: " + " ".join(listing))

	return "\n\n".join(sections)
