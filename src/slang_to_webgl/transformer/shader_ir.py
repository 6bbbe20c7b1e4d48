"""
Intermediate representation shared by the compiler passes.

The pipeline works over source text, but everything it learns about that
text lives here: parameter metadata from pragmas, the binding table, the
preamble's global definitions, per-stage working programs and the final
compiled artifact.

Design principles:
- Frozen dataclasses for facts produced once by a single pass
- MutableGlobal is the exception: CrossStageGlobalResolver re-tags its
  classification in place
- Tuples instead of lists on frozen nodes

Architecture:
    PragmaExtractor -> ParameterDeclaration
    BindingExtractor -> Binding
    GlobalDefinitionExtractor -> GlobalDefinitions
    StageSplitter -> StageSource -> StageProgram -> StageEmitter -> CompiledShader
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


# ============================================================================
# Pragmas
# ============================================================================

@dataclass(frozen=True)
class ParameterDeclaration:
    """
    Tunable parameter declared with '#pragma parameter'.

    Examples:
        #pragma parameter GAMMA "Gamma" 2.2 1.0 4.0 0.1
    """
    name: str
    display_name: str
    default: float
    minimum: float
    maximum: float
    step: float = 0.0

    def __post_init__(self):
        """Validate parameter name."""
        if not self.name:
            raise ValueError("ParameterDeclaration name cannot be empty")


@dataclass(frozen=True)
class PragmaInfo:
    """Metadata pulled from the pragma lines of one shader."""
    parameters: Tuple[ParameterDeclaration, ...] = ()
    name: Optional[str] = None
    format: Optional[str] = None

    def exclusion_names(self) -> set:
        """Names claimed by parameters, used to keep globals uninitialized."""
        return {param.name for param in self.parameters}


# ============================================================================
# Bindings
# ============================================================================

class BindingKind(Enum):
    UBO = 'ubo'
    PUSH_CONSTANT = 'push_constant'
    SAMPLER = 'sampler'


@dataclass(frozen=True)
class BindingMember:
    """One member of a uniform block; array_suffix is e.g. "[4]" for arrays."""
    type_name: str
    name: str
    array_suffix: str = ''


@dataclass(frozen=True)
class Binding:
    """
    Uniform block, push constant block or sampler declaration.

    Attributes:
        kind: Shape of the declaration
        set: Descriptor set (0 when omitted)
        slot: Binding slot (None for push constants)
        type_name: Block type name, or sampler type for samplers
        instance_name: Block instance name; sampler name for samplers
        members: Block members in declaration order
        span: (start, end) byte offsets of the declaration in the source
    """
    kind: BindingKind
    set: int = 0
    slot: Optional[int] = None
    type_name: str = ''
    instance_name: Optional[str] = None
    members: Tuple[BindingMember, ...] = ()
    span: Tuple[int, int] = (0, 0)

    def member_names(self) -> List[str]:
        return [member.name for member in self.members]


# ============================================================================
# Global definitions
# ============================================================================

class GlobalClass(Enum):
    """How a mutable global is shared between stages."""
    UNCLASSIFIED = 'unclassified'
    UNIFORM_BACKED = 'uniform_backed'
    CONSTANT = 'constant'
    STAGE_LOCAL = 'stage_local'
    VERTEX_CHANNEL = 'vertex_channel'
    BOTH_STAGES = 'both_stages'


@dataclass(frozen=True)
class FunctionDefinition:
    return_type: str
    name: str
    parameters: str
    text: str
    span: Tuple[int, int]


@dataclass(frozen=True)
class StructDefinition:
    name: str
    text: str
    span: Tuple[int, int]


@dataclass(frozen=True)
class MacroDefinition:
    """
    Preprocessor macro from the preamble.

    parameters is None for object-like macros and the raw parameter list
    (without parentheses) for function-like ones.
    """
    name: str
    value: str
    parameters: Optional[str] = None

    @property
    def function_like(self) -> bool:
        return self.parameters is not None

    def render(self) -> str:
        head = self.name if self.parameters is None else f"{self.name}({self.parameters})"
        return f"#define {head} {self.value}".rstrip()


@dataclass(frozen=True)
class ConstDefinition:
    """A const declaration statement; one statement may declare several names."""
    type_name: str
    names: Tuple[str, ...]
    text: str


@dataclass
class MutableGlobal:
    """
    Non-const global variable from the preamble.

    claimed is set when a parameter or binding member has the same name; the
    global is then emitted without its initializer and filled from the
    renamed uniform at main() entry.
    """
    type_name: str
    name: str
    initializer: Optional[str] = None
    array_suffix: str = ''
    claimed: bool = False
    classification: GlobalClass = GlobalClass.UNCLASSIFIED

    def declaration(self, with_initializer: bool = True) -> str:
        text = f"{self.type_name} {self.name}{self.array_suffix}"
        if with_initializer and self.initializer is not None and not self.claimed:
            text += f" = {self.initializer}"
        return text + ";"


@dataclass
class GlobalDefinitions:
    """Everything declared at file scope before the first stage pragma."""
    functions: List[FunctionDefinition] = field(default_factory=list)
    defines: Dict[str, MacroDefinition] = field(default_factory=dict)
    consts: List[ConstDefinition] = field(default_factory=list)
    mutable_globals: List[MutableGlobal] = field(default_factory=list)
    structs: List[StructDefinition] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.functions or self.defines or self.consts
                    or self.mutable_globals or self.structs)

    def const_names(self) -> set:
        names = set()
        for const in self.consts:
            names.update(const.names)
        return names

    def global_named(self, name: str) -> Optional[MutableGlobal]:
        for var in self.mutable_globals:
            if var.name == name:
                return var
        return None


# ============================================================================
# Stages
# ============================================================================

class Stage(Enum):
    VERTEX = 'vertex'
    FRAGMENT = 'fragment'


@dataclass(frozen=True)
class StageSource:
    """Raw body of one stage as split from the shader."""
    stage: Stage
    body: str
    synthesized: bool = False


class ChannelDirection(Enum):
    VERTEX_TO_FRAGMENT = 'vertex_to_fragment'


@dataclass(frozen=True)
class VaryingChannel:
    """
    Interpolated value carrying a global from vertex to fragment.

    type_name is the declared channel type; source_type is the type of the
    global it carries (they differ for bool globals).
    """
    base_name: str
    channel_name: str
    type_name: str
    direction: ChannelDirection = ChannelDirection.VERTEX_TO_FRAGMENT
    source_type: str = ''


@dataclass(frozen=True)
class StageProgram:
    """
    Working source of one stage between lowering and emission.

    entry_statements run at the top of main(), exit_statements right before
    main() returns.
    """
    stage: Stage
    source: str
    entry_statements: Tuple[str, ...] = ()
    exit_statements: Tuple[str, ...] = ()


# ============================================================================
# Output
# ============================================================================

@dataclass(frozen=True)
class CompiledShader:
    """Final per-shader artifact handed to the GPU program compiler."""
    vertex_source: str
    fragment_source: str
    parameters: Tuple[ParameterDeclaration, ...] = ()
    uniform_names: Tuple[str, ...] = ()
    sampler_names: Tuple[str, ...] = ()
    name: Optional[str] = None
    format: Optional[str] = None
