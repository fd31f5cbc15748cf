from .errors import SupervisorError, StartFailed, StopFailed, MonitorExhausted
from .health import HealthState, HealthCheckResult, HttpProbe, RpcProbe, GraphqlProbe, wait_until_healthy
from .process import LaunchSpec, ManagedProcess, PidFile, ProcessStatus, ResourceSnapshot
from .supervisor import ProcessSupervisor, RestartPolicy
from .services import Service, ProofServer, Indexer, Node, proof_server, indexer, dev_node
from .network import Network, Seq
from .logger import setup_logger
from .utils import flags_from_dict, check_file, tail
