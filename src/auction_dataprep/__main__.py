from auction_dataprep.cli import main

main()
