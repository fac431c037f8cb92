"""
Unit tests for native source builds.

Sub-commands are intercepted at ``subprocess.run``; tests assert on the
generated command lines and on the files installed afterwards.
"""

from unittest.mock import patch

import pytest

from provisionkit.build import (
    BuildRecipe,
    BuildSystem,
    InstallRules,
    PatchOp,
    SourceBuilder,
)
from provisionkit.core.exceptions import BuildError, CommandTimeout

RUN = "provisionkit.core.process.subprocess.run"


@pytest.fixture
def source(tmp_path):
    root = tmp_path / "src" / "log4cpp"
    (root / "include" / "log4cpp").mkdir(parents=True)
    (root / "include" / "log4cpp" / "Category.hh").write_text("// header")
    (root / "msvc10" / "x64" / "Release").mkdir(parents=True)
    (root / "msvc10" / "x64" / "Release" / "log4cpp.lib").write_text("lib")
    (root / "msvc10" / "msvc10.sln").write_text("sln")
    (root / "msvc10" / "log4cpp.vcxproj").write_text(
        "<PlatformToolset>v100</PlatformToolset>"
    )
    return root


@pytest.fixture
def windows_builder(install_root):
    return SourceBuilder(install_root, os_name="windows", arch="x64", timeout=120, jobs=8)


def argvs(mock_run):
    return [c.args[0] for c in mock_run.call_args_list]


class TestCommandGeneration:
    """Test sub-command lines per build system."""

    def test_cmake_windows(self, windows_builder, source, install_root):
        recipe = BuildRecipe(
            system=BuildSystem.CMAKE,
            toolset="v143",
            configure_args=("-DBUILD_TESTING=OFF",),
        )

        commands = windows_builder.commands(source, recipe)

        assert [c.phase for c in commands] == ["configure", "build", "install"]
        configure = commands[0].argv
        assert configure[:5] == ["cmake", "-S", str(source), "-B", str(source / "build")]
        assert ["-A", "x64"] == configure[5:7]
        assert ["-T", "v143"] == configure[7:9]
        assert f"-DCMAKE_INSTALL_PREFIX={install_root.as_posix()}" in configure
        assert configure[-1] == "-DBUILD_TESTING=OFF"
        assert commands[1].argv == [
            "cmake", "--build", str(source / "build"), "--config", "Release", "--parallel", "8",
        ]

    def test_cmake_ninja_has_no_platform(self, windows_builder, source):
        recipe = BuildRecipe(system=BuildSystem.CMAKE, generator="Ninja", run_install=False)

        commands = windows_builder.commands(source, recipe)

        assert "-A" not in commands[0].argv
        assert ["-G", "Ninja"] == commands[0].argv[5:7]
        assert len(commands) == 2

    def test_cmake_macos_default_generator(self, install_root, source):
        builder = SourceBuilder(install_root, os_name="macos", arch="arm64")

        configure = builder.commands(source, BuildRecipe(system=BuildSystem.CMAKE))[0].argv

        assert "-A" not in configure

    def test_msbuild(self, install_root, source):
        builder = SourceBuilder(install_root, os_name="windows", arch="x86")
        recipe = BuildRecipe(
            system=BuildSystem.MSBUILD,
            project="msvc10/msvc10.sln",
            toolset="v143",
            build_type="Debug",
        )

        (command,) = builder.commands(source, recipe)

        assert command.argv == [
            "msbuild",
            str(source / "msvc10" / "msvc10.sln"),
            "/p:Configuration=Debug",
            "/p:Platform=Win32",
            "/p:PlatformToolset=v143",
            "/m",
            "/nologo",
        ]
        assert command.tool == "msbuild (build)"

    def test_autotools(self, install_root, source):
        builder = SourceBuilder(install_root, os_name="linux", arch="x64", jobs=4)
        recipe = BuildRecipe(system=BuildSystem.AUTOTOOLS, configure_args=("--disable-static",))

        commands = builder.commands(source, recipe)

        assert commands[0].argv == [
            str(source / "configure"),
            f"--prefix={install_root.as_posix()}",
            "--disable-static",
        ]
        assert commands[1].argv == ["make", "-j4"]
        assert commands[2].argv == ["make", "install"]

    def test_explicit_commands(self, windows_builder, source):
        recipe = BuildRecipe(
            system=BuildSystem.COMMAND,
            commands=(("nmake", "/f", "Makefile.vc"), ("nmake", "install")),
        )

        assert [c.argv for c in windows_builder.commands(source, recipe)] == [
            ["nmake", "/f", "Makefile.vc"],
            ["nmake", "install"],
        ]

    def test_recipe_validation(self):
        with pytest.raises(ValueError, match="require a project"):
            BuildRecipe(system=BuildSystem.MSBUILD)
        with pytest.raises(ValueError, match="at least one command"):
            BuildRecipe(system=BuildSystem.COMMAND)


class TestBuild:
    """Test full builds with mocked sub-commands."""

    @pytest.fixture
    def recipe(self):
        return BuildRecipe(
            system=BuildSystem.MSBUILD,
            project="msvc10/msvc10.sln",
            toolset="v143",
            patches=(
                PatchOp(
                    target="msvc10/*.vcxproj",
                    pattern="<PlatformToolset>v100</PlatformToolset>",
                    replacement="<PlatformToolset>v143</PlatformToolset>",
                    regex=False,
                ),
            ),
            install=InstallRules(
                headers=("include/log4cpp",),
                libraries=("msvc10/*/Release/*.lib",),
            ),
            artifacts=("lib/log4cpp.lib", "include/log4cpp/Category.hh"),
        )

    @patch(RUN)
    def test_build_patches_runs_and_installs(
        self, mock_run, windows_builder, source, install_root, recipe, completed
    ):
        mock_run.return_value = completed(0)
        assert not windows_builder.is_built(recipe)

        artifacts = windows_builder.build(source, recipe)

        assert "v143" in (source / "msvc10" / "log4cpp.vcxproj").read_text()
        assert argvs(mock_run)[0][0] == "msbuild"
        assert mock_run.call_args.kwargs["timeout"] == 120
        assert (install_root / "include" / "log4cpp" / "Category.hh").exists()
        assert artifacts.libraries == [install_root / "lib" / "log4cpp.lib"]
        assert windows_builder.is_built(recipe)

    @patch(RUN)
    def test_failure_names_subcommand(self, mock_run, windows_builder, source, recipe, completed):
        """Test that a failing sub-command raises BuildError with the output tail."""
        mock_run.return_value = completed(
            1, stdout="log4cpp.vcxproj : error MSB8020: The build tools for v143 cannot be found"
        )

        with pytest.raises(BuildError) as exc_info:
            windows_builder.build(source, recipe)

        error = exc_info.value
        assert error.tool == "msbuild (build)"
        assert error.exit_code == 1
        assert "MSB8020" in error.diagnostic
        assert error.command[0] == "msbuild"

    @patch(RUN)
    def test_stops_at_first_failing_phase(self, mock_run, windows_builder, source, completed):
        mock_run.return_value = completed(1, stderr="CMake Error")

        with pytest.raises(BuildError, match="cmake \\(configure\\)"):
            windows_builder.build(source, BuildRecipe(system=BuildSystem.CMAKE))

        assert mock_run.call_count == 1

    @patch(RUN)
    def test_timeout_propagates(self, mock_run, windows_builder, source, recipe):
        import subprocess

        mock_run.side_effect = subprocess.TimeoutExpired(["msbuild"], 120)

        with pytest.raises(CommandTimeout):
            windows_builder.build(source, recipe)

    @patch(RUN)
    def test_install_rule_matching_nothing(self, mock_run, windows_builder, source, completed):
        mock_run.return_value = completed(0)
        recipe = BuildRecipe(
            system=BuildSystem.COMMAND,
            commands=(("true",),),
            install=InstallRules(libraries=("out/*.a",)),
        )

        with pytest.raises(BuildError, match="install"):
            windows_builder.build(source, recipe)

    def test_missing_source_root(self, windows_builder, tmp_path, recipe):
        with pytest.raises(BuildError, match="Source root not found"):
            windows_builder.build(tmp_path / "missing", recipe)

    def test_no_artifacts_not_built_before_first_build(self, windows_builder, source):
        recipe = BuildRecipe(system=BuildSystem.CMAKE)

        assert not windows_builder.is_built(recipe, source)
        assert not windows_builder.is_built(recipe)

    @patch(RUN)
    def test_no_artifacts_stamp_after_build(self, mock_run, windows_builder, source, completed):
        """Test that a build without artifacts is recorded and not repeated."""
        mock_run.return_value = completed(0)
        recipe = BuildRecipe(system=BuildSystem.COMMAND, commands=(("nmake",),))

        windows_builder.build(source, recipe)

        assert windows_builder.is_built(recipe, source)
        assert windows_builder.stamp_path(source, recipe).is_file()
        changed = BuildRecipe(system=BuildSystem.COMMAND, commands=(("nmake", "all"),))
        assert not windows_builder.is_built(changed, source)

    @patch(RUN)
    def test_failed_build_leaves_no_stamp(self, mock_run, windows_builder, source, completed):
        mock_run.return_value = completed(2, stderr="fatal error")
        recipe = BuildRecipe(system=BuildSystem.COMMAND, commands=(("nmake",),))

        with pytest.raises(BuildError):
            windows_builder.build(source, recipe)

        assert not windows_builder.is_built(recipe, source)

    @patch(RUN)
    def test_recipe_env_passed(self, mock_run, windows_builder, source, completed):
        mock_run.return_value = completed(0)
        recipe = BuildRecipe(
            system=BuildSystem.COMMAND, commands=(("nmake",),), env={"CL": "/MP"}
        )

        windows_builder.build(source, recipe)

        assert mock_run.call_args.kwargs["env"]["CL"] == "/MP"
        assert mock_run.call_args.kwargs["cwd"] == str(source)
