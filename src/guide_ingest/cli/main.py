"""命令行入口。"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import typer
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from guide_ingest.core.config import API_BASE_URL_ENV, BatchConfig, MatchConfig, ServiceConfig
from guide_ingest.core.exceptions import GuideIngestError
from guide_ingest.core.models import SourceFile
from guide_ingest.core.progress import BatchRunState
from guide_ingest.core.scanner import RASTER_EXTENSIONS, VECTOR_EXTENSIONS, collect_files
from guide_ingest.processing.batch import BatchDriver, BatchSelection, build_category_policy
from guide_ingest.processing.converter import convert_vector_file
from guide_ingest.processing.orchestrator import upload_triple
from guide_ingest.processing.triples import (
    TripleWorkspace,
    commit_tag_draft,
    get_triple,
    select_raster,
    set_description,
    set_tag_draft,
)
from guide_ingest.services.client import GuideServiceClient
from guide_ingest.services.credentials import (
    TOKEN_ENV,
    CredentialProvider,
    FileCredentialProvider,
    StaticCredentialProvider,
)
from guide_ingest.utils.logging import setup_logging

DEFAULT_TOKEN_FILE = Path.home() / ".config" / "guide-ingest" / "token"

app = typer.Typer(help="指南素材（图片 + SVG + Vector Drawable）批量登记工具。")


@dataclass(slots=True)
class CliState:
    api_base: Optional[str]
    token: Optional[str]
    token_file: Path

    def credentials(self) -> CredentialProvider:
        if self.token:
            return StaticCredentialProvider(self.token)
        return FileCredentialProvider(self.token_file)

    def client(self) -> GuideServiceClient:
        return GuideServiceClient(ServiceConfig.from_env(self.api_base), self.credentials())


@app.callback()
def main(
    ctx: typer.Context,
    api_base: Optional[str] = typer.Option(None, "--api-base", envvar=API_BASE_URL_ENV, help="指南服务地址"),
    token: Optional[str] = typer.Option(None, "--token", envvar=TOKEN_ENV, help="管理员令牌"),
    token_file: Path = typer.Option(DEFAULT_TOKEN_FILE, "--token-file", help="令牌保存位置"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """全局参数。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)
    ctx.obj = CliState(api_base=api_base, token=token, token_file=token_file.expanduser())


def _run(coro):
    try:
        return asyncio.run(coro)
    except GuideIngestError as exc:
        typer.secho(f"错误：{exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


def _collect_pairs(sources: List[Path], recursive: bool) -> BatchSelection:
    resolved = [p.expanduser().resolve() for p in sources]
    config = MatchConfig(allow_recursive=recursive)
    selection = BatchSelection(config)
    selection.select_vectors(collect_files(resolved, VECTOR_EXTENSIONS, config.allow_recursive))
    selection.select_rasters(collect_files(resolved, RASTER_EXTENSIONS, config.allow_recursive))
    return selection


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(state: BatchRunState) -> None:
        nonlocal task_id
        if state.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("登记指南", total=100)
        progress.update(
            task_id,
            completed=state.overall_percentage,
            description=f"登记指南 {state.current_index}/{state.total}",
        )
        if state.message:
            progress.log(state.message)

    return callback


@app.command("match")
def match_cli(
    source: List[Path] = typer.Argument(..., help="包含 image_<数字>.svg/png/jpg 的文件或目录"),
    recursive: bool = typer.Option(False, "--recursive/--no-recursive", help="是否递归扫描目录"),
) -> None:
    """只做文件配对，列出配对结果与未匹配的文件。"""

    match = _collect_pairs(source, recursive).match
    for pair in match.pairs:
        typer.echo(f"{pair.base_name}: {pair.vector_file.name} + {pair.raster_file.name}")
    for item in match.unmatched:
        typer.secho(f"未匹配: {item.name}", fg=typer.colors.YELLOW)
    typer.echo(f"配对 {len(match.pairs)} 组，未匹配 {len(match.unmatched)} 个文件。")


@app.command("convert")
def convert_cli(
    svg: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="SVG 文件"),
    output: Path = typer.Option(..., "--output", "-o", help="XML 输出目录"),
) -> None:
    """把 SVG 转换为 Android Vector Drawable XML。"""

    output_dir = output.expanduser().resolve()
    output_dir.mkdir(parents=True, exist_ok=True)

    async def convert_all() -> int:
        written = 0
        for path in svg:
            drawable = await convert_vector_file(SourceFile.from_path(path.expanduser().resolve()))
            (output_dir / drawable.name).write_bytes(await drawable.read_bytes())
            typer.echo(f"{path.name} -> {drawable.name}")
            written += 1
        return written

    count = _run(convert_all())
    typer.echo(f"转换完成：{count} 个文件。")


@app.command("upload")
def upload_cli(
    ctx: typer.Context,
    svg: Path = typer.Option(..., "--svg", exists=True, dir_okay=False, help="SVG 文件"),
    image: Path = typer.Option(..., "--image", exists=True, dir_okay=False, help="PNG/JPG 图片"),
    category_id: int = typer.Option(..., "--category", help="子分类 ID"),
    description: str = typer.Option("", "--description", help="指南说明"),
    tags: List[str] = typer.Option([], "--tag", help="标签，可重复指定"),
) -> None:
    """上传并登记单个指南。"""

    state: CliState = ctx.obj

    async def upload_one():
        workspace = TripleWorkspace()
        triple = workspace.add(category_id)
        await workspace.attach_vector(triple.id, SourceFile.from_path(svg.expanduser().resolve()))
        workspace.apply(select_raster, triple.id, SourceFile.from_path(image.expanduser().resolve()))
        workspace.apply(set_description, triple.id, description)
        for tag in tags:
            workspace.apply(set_tag_draft, triple.id, tag)
            workspace.apply(commit_tag_draft, triple.id)

        with Progress(SpinnerColumn(), TextColumn("{task.description}"), BarColumn()) as progress:
            task_id = progress.add_task(workspace.get(triple.id).base_name or svg.stem, total=100)
            workspace.listener = lambda triples: progress.update(
                task_id, completed=get_triple(triples, triple.id).progress
            )
            async with state.client() as client:
                return await upload_triple(workspace, triple.id, client)

    guide = _run(upload_one())
    typer.echo(f"登记完成：{guide.file_name} (guide_id={guide.guide_id})")


@app.command("batch")
def batch_cli(
    ctx: typer.Context,
    source: List[Path] = typer.Argument(..., help="包含 image_<数字>.svg/png/jpg 的文件或目录"),
    recursive: bool = typer.Option(False, "--recursive/--no-recursive", help="是否递归扫描目录"),
    policy: str = typer.Option("first", "--category-policy", help="分类策略 first/random/fixed"),
    category_id: Optional[int] = typer.Option(None, "--category", help="fixed 策略使用的子分类 ID"),
    seed: Optional[int] = typer.Option(None, "--seed", help="random 策略的随机种子"),
    report: Optional[Path] = typer.Option(None, "--report", help="CSV 报告输出路径"),
) -> None:
    """批量配对、转换、上传并登记。"""

    state: CliState = ctx.obj
    selection = _collect_pairs(source, recursive)
    for item in selection.match.unmatched:
        typer.secho(f"未匹配: {item.name}", fg=typer.colors.YELLOW)
    if not selection.match.pairs:
        typer.secho("没有配对成功的文件。", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    category_policy = _run_sync(lambda: build_category_policy(policy, category_id, seed))
    report_path = report.expanduser().resolve() if report else None
    config = BatchConfig(report_filename=report_path.name if report_path else None)

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
    )

    async def run_batch():
        async with state.client() as client:
            driver = BatchDriver(
                client,
                category_policy=category_policy,
                config=config,
                progress_callback=_build_progress_callback(progress),
            )
            return await driver.run_selection(selection, report_dir=report_path.parent if report_path else None)

    with progress:
        result = _run(run_batch())

    for outcome in result.failed:
        typer.secho(f"失败 {outcome.base_name}: {outcome.message}", fg=typer.colors.RED)
    typer.echo(f"批量登记完成：成功 {result.success_count} 个，失败 {result.failure_count} 个。")
    if report_path:
        typer.echo(f"报告文件：{report_path}")
    if result.all_failed:
        raise typer.Exit(code=1)


@app.command("categories")
def categories_cli(ctx: typer.Context) -> None:
    """列出子分类。"""

    state: CliState = ctx.obj

    async def fetch():
        async with state.client() as client:
            return await client.list_categories()

    for category in _run(fetch()):
        typer.echo(f"{category.id}\t{category.name}\t{category.category_name}")


@app.command("delete")
def delete_cli(
    ctx: typer.Context,
    ids: str = typer.Argument(..., help="逗号分隔的指南 ID，如 1, 2, 3"),
    yes: bool = typer.Option(False, "--yes", "-y", help="跳过确认"),
) -> None:
    """按 ID 删除已登记的指南。"""

    state: CliState = ctx.obj
    guide_ids = parse_guide_ids(ids)
    if not guide_ids:
        typer.secho("请输入有效的指南 ID。", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if not yes:
        typer.confirm(f"确定删除 {len(guide_ids)} 个指南？ID: {', '.join(map(str, guide_ids))}", abort=True)

    async def delete():
        async with state.client() as client:
            await client.delete_guides(guide_ids)

    _run(delete())
    typer.echo(f"已删除 {len(guide_ids)} 个指南。")


@app.command("login")
def login_cli(ctx: typer.Context, token: str = typer.Argument(..., help="管理员令牌")) -> None:
    """保存令牌到本地文件。"""

    state: CliState = ctx.obj
    if not token.strip():
        raise typer.BadParameter("令牌不能为空")
    FileCredentialProvider(state.token_file).save(token)
    typer.echo("令牌已保存。")


@app.command("logout")
def logout_cli(ctx: typer.Context) -> None:
    """删除本地保存的令牌。"""

    state: CliState = ctx.obj
    FileCredentialProvider(state.token_file).clear()
    typer.echo("令牌已删除。")


def parse_guide_ids(value: str) -> list[int]:
    """解析逗号分隔的 ID，忽略无法解析或小于 1 的值。"""

    guide_ids: list[int] = []
    for part in value.split(","):
        try:
            number = int(part.strip())
        except ValueError:
            continue
        if number > 0:
            guide_ids.append(number)
    return guide_ids


def _run_sync(factory):
    try:
        return factory()
    except GuideIngestError as exc:
        raise typer.BadParameter(str(exc)) from exc


if __name__ == "__main__":
    app()
