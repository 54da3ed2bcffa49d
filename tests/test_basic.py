"""Basic tests for SQL Console package and CLI."""

import pytest
from click.testing import CliRunner

import sqlconsole
from sqlconsole.cli.main import cli


class TestPackageBasics:
    """Test basic package functionality."""

    def test_package_version(self) -> None:
        """Test that package has a version."""
        assert hasattr(sqlconsole, '__version__')
        assert isinstance(sqlconsole.__version__, str)
        assert len(sqlconsole.__version__) > 0

    def test_package_exports(self) -> None:
        """Test that package exports expected classes."""
        assert hasattr(sqlconsole, 'SQLConsoleError')
        assert hasattr(sqlconsole, 'ConfigurationError')
        assert hasattr(sqlconsole, 'DatabaseError')
        assert issubclass(sqlconsole.QueryExecutionError, sqlconsole.DatabaseError)


class TestCLI:
    """Test CLI functionality."""

    def test_cli_help(self) -> None:
        """Test that CLI help works."""
        runner = CliRunner()
        result = runner.invoke(cli, ['--help'])
        assert result.exit_code == 0
        assert 'SQL Console' in result.output

    def test_cli_version(self) -> None:
        """Test that CLI version flag works."""
        runner = CliRunner()
        result = runner.invoke(cli, ['--version'])
        assert result.exit_code == 0
        assert 'SQL Console' in result.output
        assert sqlconsole.__version__ in result.output

    def test_cli_dashboard(self) -> None:
        """Test that running without a command shows the dashboard."""
        runner = CliRunner()
        result = runner.invoke(cli, [])
        assert result.exit_code == 0
        assert 'sqlconsole query' in result.output

    @pytest.mark.parametrize("command, expected", [
        (['query', '--help'], 'Execute a SQL batch'),
        (['conn', '--help'], 'Connection profile management'),
        (['config', '--help'], 'Configuration management'),
    ])
    def test_command_help(self, command, expected) -> None:
        """Test command help pages."""
        runner = CliRunner()
        result = runner.invoke(cli, command)
        assert result.exit_code == 0
        assert expected in result.output
