"""Tests for the budgeted prompt context builder."""

import pytest

from diffscribe.analysis.symbols import CodeSymbol, SymbolKind
from diffscribe.changes import ChangeStatus, FileCategory, FileChange, StagedChanges
from diffscribe.commit_types import CommitType
from diffscribe.context import ContextBuilder, PromptContext, infer_commit_type, infer_scope
from diffscribe.context.builder import scope_from_path


def make_diff(path, added=5, removed=0, width=40):
    lines = [f"--- a/{path}", f"+++ b/{path}", f"@@ -1,{removed or 1} +1,{added} @@"]
    lines += [f"-old line {i} ".ljust(width, "x") for i in range(removed)]
    lines += [f"+new line {i} ".ljust(width, "y") for i in range(added)]
    return "\n".join(lines)


def make_change(path, status=ChangeStatus.MODIFIED, added=5, removed=0, **kwargs):
    return FileChange(
        path=path,
        status=status,
        diff=make_diff(path, added, removed),
        additions=added,
        deletions=removed,
        **kwargs,
    )


def make_symbol(name, path="src/core/lib.py", kind=SymbolKind.FUNCTION,
                is_added=True, is_public=True, line=1):
    return CodeSymbol(kind=kind, name=name, file=path, line=line,
                      is_public=is_public, is_added=is_added)


# ---------------------------------------------------------------------------
# Budget invariant
# ---------------------------------------------------------------------------

class TestBudget:

    @pytest.mark.parametrize("budget", [1000, 2500, 8000, 24000])
    def test_huge_input_never_exceeds_budget(self, budget):
        files = [make_change(f"src/mod{i}/file{i}.py", added=200, removed=50)
                 for i in range(300)]
        symbols = [make_symbol(f"function_number_{i}", f"src/mod{i % 300}/file.py",
                               is_added=i % 3 != 0, line=i)
                   for i in range(2000)]
        builder = ContextBuilder(max_context_chars=budget)

        context = builder.build(StagedChanges.from_files(files), symbols)

        assert len(context.to_prompt()) <= budget

    def test_huge_input_reports_omissions(self):
        files = [make_change(f"src/mod{i}/file{i}.py", added=200) for i in range(300)]
        builder = ContextBuilder(max_context_chars=8000)

        context = builder.build(StagedChanges.from_files(files), [])

        assert "more files" in context.file_breakdown
        assert "files not shown due to budget" in context.truncated_diff

    def test_extreme_share_values_stay_within_budget(self):
        files = [make_change(f"src/a/f{i}.py", added=100) for i in range(50)]
        symbols = [make_symbol(f"sym{i}") for i in range(500)]
        changes = StagedChanges.from_files(files)

        for share in (0.0, 1.0):
            context = ContextBuilder(max_context_chars=3000, symbol_share=share).build(
                changes, symbols)
            assert len(context.to_prompt()) <= 3000

    def test_small_input_is_complete(self):
        change = make_change("src/auth/login.py", added=3)
        builder = ContextBuilder()

        context = builder.build(StagedChanges.from_files([change]), [make_symbol("login")])
        prompt = context.to_prompt()

        assert "truncated" not in prompt
        assert "not shown" not in prompt
        assert "+new line 2" in context.truncated_diff
        assert "[+] pub Function login (src/core/lib.py:1)" in prompt

    def test_symbols_survive_before_diff(self):
        files = [make_change("src/core/big.py", added=2000)]
        symbols = [make_symbol(f"handler_{i}") for i in range(10)]
        builder = ContextBuilder(max_context_chars=3000)

        context = builder.build(StagedChanges.from_files(files), symbols)

        assert context.symbols_added.count("\n") == 9
        assert "lines truncated" in context.truncated_diff

    def test_symbol_overflow_marker(self):
        symbols = [make_symbol(f"a_rather_long_function_name_{i}") for i in range(400)]
        builder = ContextBuilder(max_context_chars=2000)

        context = builder.build(StagedChanges.from_files([make_change("src/x/y.py")]), symbols)

        assert "more symbols" in context.symbols_added

    @pytest.mark.parametrize("budget, share", [(999, 0.5), (5000, -0.1), (5000, 1.5)])
    def test_invalid_parameters(self, budget, share):
        with pytest.raises(ValueError):
            ContextBuilder(max_context_chars=budget, symbol_share=share)

    def test_from_config(self):
        class Cfg:
            MAX_CONTEXT_CHARS = 5000
            SYMBOL_SHARE = 0.3
            MAX_DIFF_LINES = 200
            MAX_FILE_LINES = 40

        builder = ContextBuilder.from_config(Cfg())

        assert builder.max_context_chars == 5000
        assert builder.symbol_share == 0.3
        assert builder.max_diff_lines == 200
        assert builder.max_file_lines == 40


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

class TestSections:

    def test_summary(self):
        changes = StagedChanges.from_files([
            make_change("a.py", ChangeStatus.ADDED, added=4),
            make_change("b.py", added=2, removed=1),
            make_change("c.py", ChangeStatus.RENAMED, added=0, old_path="old_c.py"),
        ])

        summary = ContextBuilder.summarize_changes(changes)

        assert summary == "3 files (1 added, 1 modified, 0 deleted, 1 renamed) | +6 -1"

    def test_files_sorted_by_category(self):
        changes = StagedChanges.from_files([
            make_change("README.md"),
            make_change("tests/test_api.py"),
            make_change("src/api.py"),
        ])

        lines = ContextBuilder.format_files(changes)

        assert [l.split()[1] for l in lines] == ["src/api.py", "tests/test_api.py", "README.md"]

    def test_binary_and_rename_rendering(self):
        changes = StagedChanges.from_files([
            FileChange("assets/logo.png", ChangeStatus.ADDED, is_binary=True),
            make_change("src/new_name.py", ChangeStatus.RENAMED, old_path="src/old_name.py"),
        ])

        context = ContextBuilder().build(changes, [])

        assert "[+] assets/logo.png (binary)" in context.file_breakdown
        assert "[R] src/old_name.py -> src/new_name.py" in context.file_breakdown
        assert "logo.png" not in context.truncated_diff
        assert "--- src/old_name.py -> src/new_name.py ---" in context.truncated_diff

    def test_lock_file_content_skipped(self):
        changes = StagedChanges.from_files([make_change("Cargo.lock", added=300)])

        context = ContextBuilder().build(changes, [])

        assert "(lock file - content skipped)" in context.truncated_diff
        assert "+new line" not in context.truncated_diff

    def test_per_file_truncation_marker(self):
        builder = ContextBuilder(max_file_lines=10)
        changes = StagedChanges.from_files([make_change("src/a/b.py", added=50)])

        diff = builder.truncate_diff(changes, 50_000)

        # 3 header lines + 50 added lines, 10 shown
        assert "... (43 lines truncated)" in diff

    def test_file_line_budget(self):
        builder = ContextBuilder(max_diff_lines=500, max_file_lines=100)

        assert builder.file_line_budget(1, FileCategory.SOURCE) == 100
        assert builder.file_line_budget(4, FileCategory.TEST) == 100
        assert builder.file_line_budget(50, FileCategory.DOCS) == 20

    def test_prompt_mentions_suggestions(self):
        changes = StagedChanges.from_files([make_change("src/auth/jwt.py", ChangeStatus.ADDED)])

        prompt = ContextBuilder().build(changes, []).to_prompt()

        assert "SUGGESTED TYPE: feat" in prompt
        assert "SCOPE: auth" in prompt
        assert '"scope": "auth"' in prompt


# ---------------------------------------------------------------------------
# Inference
# ---------------------------------------------------------------------------

class TestInferCommitType:

    def test_empty(self):
        assert infer_commit_type(StagedChanges(), []) is CommitType.CHORE

    @pytest.mark.parametrize("paths, expected", [
        (["README.md", "docs/guide.rst"], CommitType.DOCS),
        (["tests/test_a.py", "src/b_test.go"], CommitType.TEST),
        (["pyproject.toml", "config.yaml"], CommitType.CHORE),
        (["Dockerfile", ".github/workflows/ci.yml"], CommitType.BUILD),
    ])
    def test_single_category(self, paths, expected):
        changes = StagedChanges.from_files([make_change(p) for p in paths])

        assert infer_commit_type(changes, []) is expected

    def test_new_public_function_is_feat(self):
        changes = StagedChanges.from_files([make_change("src/a/b.py", added=3)])

        assert infer_commit_type(changes, [make_symbol("login")]) is CommitType.FEAT

    def test_modified_function_is_not_feat(self):
        changes = StagedChanges.from_files([make_change("src/core/lib.py", added=3, removed=2)])
        symbols = [make_symbol("login"), make_symbol("login", is_added=False)]

        assert infer_commit_type(changes, symbols) is CommitType.FIX

    def test_mostly_deletions_is_refactor(self):
        changes = StagedChanges.from_files([make_change("src/a/b.py", added=10, removed=50)])

        assert infer_commit_type(changes, []) is CommitType.REFACTOR

    def test_mostly_new_files_is_feat(self):
        changes = StagedChanges.from_files([
            make_change("src/a/x.py", ChangeStatus.ADDED),
            make_change("src/a/y.py", ChangeStatus.ADDED),
            make_change("src/a/z.py"),
        ])

        assert infer_commit_type(changes, []) is CommitType.FEAT


class TestInferScope:

    def test_shared_scope(self):
        changes = StagedChanges.from_files([
            make_change("src/auth/login.py"),
            make_change("src/auth/jwt.py"),
            make_change("README.md"),
        ])

        assert infer_scope(changes) == "auth"

    def test_disagreeing_scopes(self):
        changes = StagedChanges.from_files([
            make_change("src/auth/login.py"),
            make_change("src/billing/invoice.py"),
        ])

        assert infer_scope(changes) is None

    @pytest.mark.parametrize("path, expected", [
        ("packages/Core/index.ts", "Core"),
        ("src/main.rs", None),
        ("crates/parser/src/lib.rs", "parser"),
        ("api/handlers.go", "api"),
    ])
    def test_scope_from_path(self, path, expected):
        assert scope_from_path(path) == expected

    def test_scope_lowercased(self):
        changes = StagedChanges.from_files([make_change("packages/Core/index.ts")])

        assert infer_scope(changes) == "core"


def test_prompt_context_size_matches_prompt():
    context = PromptContext(
        change_summary="1 files", file_breakdown="[M] a.py (+1 -0)",
        symbols_added="", symbols_removed="", suggested_type=CommitType.FIX,
        suggested_scope=None, truncated_diff="+x\n",
    )

    assert context.serialized_size() == len(context.to_prompt())
    assert '"scope": null' in context.to_prompt()
    assert "SYMBOLS CHANGED" not in context.to_prompt()
