"""配置管理模块。

提供基于 OmegaConf + YAML 的统一配置加载、验证和管理功能。
"""

from dataclasses import dataclass, field
from pathlib import Path
from collections.abc import Hashable
from typing import Dict, List, Optional
from omegaconf import OmegaConf, DictConfig
import os
from dotenv import load_dotenv


# 注册环境变量解析器（支持 ${env:VAR} 语法）
if not OmegaConf.has_resolver("env"):
    OmegaConf.register_new_resolver("env", lambda var: os.getenv(var, ""))


# 合法日志级别
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


# ============================================================
# 配置数据类定义
# ============================================================


@dataclass
class ProjectConfig:
    """项目基础配置。"""

    name: str
    version: str


@dataclass
class ContextConfig:
    """执行上下文配置。"""

    working_dir: Optional[Path]
    local: bool
    closed: bool


@dataclass
class LibrariesConfig:
    """library 作用域配置。"""

    flatten: List[str] = field(default_factory=list)
    aliases: Dict[str, str] = field(default_factory=dict)


@dataclass
class CodecConfig:
    """编解码配置。"""

    digits: int
    plot_dpi: int


@dataclass
class EvaluationConfig:
    """求值配置。"""

    capture_stdout: bool
    capture_plots: bool
    max_message_length: int


@dataclass
class LoggingConfig:
    """日志配置。"""

    level: str
    console_output: bool
    file_output: bool
    log_dir: Path


@dataclass
class Config(Hashable):
    """顶层配置类。

    实现 Hashable 接口，可用作 dict key 和 set 成员。
    """

    project: ProjectConfig
    context: ContextConfig
    libraries: LibrariesConfig
    codec: CodecConfig
    evaluation: EvaluationConfig
    logging: LoggingConfig

    def __hash__(self) -> int:
        """基于项目名称、版本与库白名单的哈希值。"""
        return hash(
            (
                self.project.name,
                self.project.version,
                tuple(self.libraries.flatten),
                tuple(sorted(self.libraries.aliases.items())),
            )
        )


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "default.yaml"


# ============================================================
# 配置加载与验证函数
# ============================================================


def load_config(
    config_path: Path | None = None, use_cli: bool = False, env_file: Path | None = None
) -> Config:
    """加载 YAML 配置并合并 CLI 参数和环境变量。

    配置优先级（从高到低）:
        1. CLI 参数（key=value，需 use_cli=True）
        2. 环境变量（.env 文件或系统环境变量）
        3. YAML 配置文件

    Args:
        config_path: 配置文件路径，默认为 config/default.yaml
        use_cli: 是否合并 CLI 参数（通过 OmegaConf.from_cli()）；
            上下文通常嵌入宿主进程运行，默认关闭
        env_file: .env 文件路径，默认为项目根目录的 .env 文件

    Returns:
        验证后的 Config 对象

    Raises:
        FileNotFoundError: 配置文件不存在
        ValueError: 配置验证失败

    示例:
        >>> cfg = load_config()  # 加载默认配置
        >>> cfg = load_config(Path("custom.yaml"))  # 加载自定义配置
        >>> cfg = load_config(env_file=Path(".env.prod"))  # 使用指定环境变量文件
    """
    from utils.logger_system import log_msg

    # 步骤 1: 加载 .env 文件到环境变量
    if env_file is None:
        env_file = Path(__file__).parent.parent / ".env"

    if env_file.exists():
        load_dotenv(env_file, override=False)  # override=False: 不覆盖已存在的环境变量
        log_msg("INFO", f"加载环境变量文件: {env_file}")
    else:
        log_msg("DEBUG", "未找到 .env 文件，使用系统环境变量")

    # 步骤 2: 确定配置文件路径
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        error_msg = f"配置文件不存在: {config_path}"
        log_msg("ERROR", error_msg)
        raise FileNotFoundError(error_msg)

    log_msg("DEBUG", f"加载配置文件: {config_path}")

    # 步骤 3: 加载 YAML 配置（会自动解析 ${env:VAR} 插值）
    cfg = OmegaConf.load(config_path)

    # 步骤 4: 合并 CLI 参数（优先级最高）
    if use_cli:
        cli_cfg = OmegaConf.from_cli()
        if cli_cfg:
            log_msg("INFO", f"合并 CLI 参数: {OmegaConf.to_yaml(cli_cfg)}")
            cfg = OmegaConf.merge(cfg, cli_cfg)

    # 步骤 5: 验证配置
    validated_cfg = validate_config(cfg)
    log_msg("DEBUG", "配置加载并验证成功")

    return validated_cfg


def _default_schema() -> DictConfig:
    """结构化配置模板（提供缺省值与类型检查）。"""
    return OmegaConf.structured(
        Config(
            project=ProjectConfig(name="pycontext", version="0.1.0"),
            context=ContextConfig(working_dir=None, local=True, closed=False),
            libraries=LibrariesConfig(),
            codec=CodecConfig(digits=15, plot_dpi=100),
            evaluation=EvaluationConfig(
                capture_stdout=True, capture_plots=True, max_message_length=5100
            ),
            logging=LoggingConfig(
                level="INFO",
                console_output=False,
                file_output=False,
                log_dir=Path("logs"),
            ),
        )
    )


def validate_config(cfg: DictConfig) -> Config:
    """验证配置完整性和合法性。

    Args:
        cfg: OmegaConf DictConfig 对象

    Returns:
        类型化的 Config 对象

    Raises:
        ValueError: 配置验证失败

    验证规则:
        1. 类型检查: 与结构化模板合并（类型不符时报错）
        2. 数值范围: codec.digits 在 1-17 之间，codec.plot_dpi 为正数
        3. 日志级别: 必须为 DEBUG/INFO/WARNING/ERROR 之一（空值视为 INFO）
        4. 路径解析: working_dir 必须存在，log_dir 转为绝对路径
    """
    from utils.logger_system import log_msg

    # ---- 类型化合并 ----
    try:
        cfg_merged = OmegaConf.merge(_default_schema(), cfg)
        cfg_dict = OmegaConf.to_container(cfg_merged, resolve=True)
    except Exception as e:
        error_msg = f"配置类型错误: {e}"
        log_msg("ERROR", error_msg)
        raise ValueError(error_msg) from e

    # ---- 数值范围检查 ----
    digits = cfg_dict["codec"]["digits"]
    if not 1 <= digits <= 17:
        error_msg = f"`codec.digits` 必须在 1-17 之间: {digits}"
        log_msg("ERROR", error_msg)
        raise ValueError(error_msg)

    if cfg_dict["codec"]["plot_dpi"] <= 0:
        error_msg = f"`codec.plot_dpi` 必须为正数: {cfg_dict['codec']['plot_dpi']}"
        log_msg("ERROR", error_msg)
        raise ValueError(error_msg)

    # ---- 日志级别 ----
    level = (cfg_dict["logging"]["level"] or "INFO").upper()
    if level not in LOG_LEVELS:
        error_msg = f"`logging.level` 必须为 {', '.join(LOG_LEVELS)} 之一: {level}"
        log_msg("ERROR", error_msg)
        raise ValueError(error_msg)
    cfg_dict["logging"]["level"] = level

    # ---- 路径解析 ----
    working_dir = cfg_dict["context"]["working_dir"]
    if working_dir:
        working_dir = Path(working_dir).resolve()
        if not working_dir.is_dir():
            error_msg = f"工作目录不存在: {working_dir}"
            log_msg("ERROR", error_msg)
            raise ValueError(error_msg)
        cfg_dict["context"]["working_dir"] = working_dir
    else:
        cfg_dict["context"]["working_dir"] = None

    cfg_dict["logging"]["log_dir"] = Path(cfg_dict["logging"]["log_dir"]).resolve()

    # 手动构造 Config 对象（确保 Path 类型正确）
    return Config(
        project=ProjectConfig(**cfg_dict["project"]),
        context=ContextConfig(**cfg_dict["context"]),
        libraries=LibrariesConfig(
            flatten=list(cfg_dict["libraries"]["flatten"]),
            aliases=dict(cfg_dict["libraries"]["aliases"]),
        ),
        codec=CodecConfig(**cfg_dict["codec"]),
        evaluation=EvaluationConfig(**cfg_dict["evaluation"]),
        logging=LoggingConfig(**cfg_dict["logging"]),
    )


def init_logging(cfg: Config):
    """按配置初始化全局日志系统。

    Args:
        cfg: Config 对象

    Returns:
        初始化的 LoggerSystem 实例
    """
    from utils.logger_system import init_logger

    return init_logger(
        cfg.logging.log_dir,
        level=cfg.logging.level,
        console_output=cfg.logging.console_output,
        file_output=cfg.logging.file_output,
    )


def print_config(cfg: Config) -> None:
    """美观打印配置（用于调试）。

    Args:
        cfg: Config 对象

    实现细节:
        - 使用 rich 库高亮显示 YAML 格式
        - 使用 paraiso-dark 主题
    """
    from rich import print as rprint
    from rich.syntax import Syntax

    # 转换为字典以便序列化
    cfg_dict = {
        "project": {
            "name": cfg.project.name,
            "version": cfg.project.version,
        },
        "context": {
            "working_dir": str(cfg.context.working_dir) if cfg.context.working_dir else None,
            "local": cfg.context.local,
            "closed": cfg.context.closed,
        },
        "libraries": {
            "flatten": list(cfg.libraries.flatten),
            "aliases": dict(cfg.libraries.aliases),
        },
        "codec": {
            "digits": cfg.codec.digits,
            "plot_dpi": cfg.codec.plot_dpi,
        },
        "evaluation": {
            "capture_stdout": cfg.evaluation.capture_stdout,
            "capture_plots": cfg.evaluation.capture_plots,
            "max_message_length": cfg.evaluation.max_message_length,
        },
        "logging": {
            "level": cfg.logging.level,
            "console_output": cfg.logging.console_output,
            "file_output": cfg.logging.file_output,
            "log_dir": str(cfg.logging.log_dir),
        },
    }

    yaml_str = OmegaConf.create(cfg_dict)
    yaml_str = OmegaConf.to_yaml(yaml_str)
    syntax = Syntax(yaml_str, "yaml", theme="paraiso-dark", line_numbers=True)
    rprint(syntax)
